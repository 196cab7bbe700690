import hashlib
from typing import List, Tuple

from property_fusion.models import StructuredAddress


def identity_seed(address: StructuredAddress) -> str:
    parts = [
        address.street_line,
        address.city,
        address.state,
        address.postal_code,
    ]
    return "|".join(" ".join(str(p or "").casefold().split()) for p in parts)


def compute_identity_key(address: StructuredAddress) -> str:
    return hashlib.sha256(identity_seed(address).encode("utf-8")).hexdigest()


def identity_warnings(address: StructuredAddress) -> List[str]:
    warnings: List[str] = []
    if not address.city and not address.postal_code:
        warnings.append("Missing city and postal code; identity key is street-only.")
    elif not address.postal_code:
        warnings.append("Missing postal code; identity key may be weaker.")
    return warnings


def describe_identity(address: StructuredAddress) -> Tuple[str, List[str]]:
    return compute_identity_key(address), identity_warnings(address)
