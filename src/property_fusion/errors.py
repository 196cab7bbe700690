from __future__ import annotations

from typing import Any, Optional


class PropertyFusionError(Exception):
    """Base class for errors raised by the fusion engine."""


class MalformedAddress(PropertyFusionError, ValueError):
    """No street line could be isolated from the address text."""

    def __init__(self, address_text: Any, reason: str = "no street line") -> None:
        self.address_text = address_text
        self.reason = reason
        super().__init__(f"Malformed address ({reason})")


class EnrichmentUnavailable(PropertyFusionError):
    """The enrichment provider could not produce a snapshot."""

    def __init__(
        self,
        message: str,
        *,
        identity_key: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.identity_key = identity_key
        self.status_code = status_code
        super().__init__(message)


class ImplausibleValue(PropertyFusionError, ValueError):
    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Implausible value for {field}: {value!r} ({reason})")


class StoreWriteFailure(PropertyFusionError):
    def __init__(self, identity_key: str, message: str) -> None:
        self.identity_key = identity_key
        super().__init__(f"Store write failed for {identity_key}: {message}")


class MalformedObservation(PropertyFusionError, ValueError):
    """An importer record has the wrong shape for an observation."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Malformed observation field {field}: {reason}")
