from datetime import datetime, timezone

import pytest
import requests

from property_fusion.config import FusionSettings
from property_fusion.enrichment import (
    EnrichmentClient,
    HttpEnrichmentClient,
    NoopEnrichmentClient,
    get_enrichment_client,
)
from property_fusion.enrichment.snapshot import EnrichmentSnapshot, get_nested
from property_fusion.errors import EnrichmentUnavailable
from property_fusion.models import Source
from property_fusion.normalize import normalize

PAYLOAD = {
    "identifier": {"obPropId": 123456, "apn": "12-34-56"},
    "address": {"oneLine": "123 MAIN ST, ANYTOWN, CA 90210"},
    "summary": {"yearbuilt": 1984, "proptype": "SFR"},
    "building": {"size": {"universalsize": 1750}, "rooms": {"beds": 3, "bathstotal": 2.5}},
    "lot": {"lotsize1": 0.17},
    "owner": {"owner1": {"name": "JOHN SMITH"}},
    "avm": {"amount": {"value": 650000}},
    "sale": {"amount": {"saleamt": None}},
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.headers = {}
        self.calls = []
        self._responses = list(responses)

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses, **kwargs):
    session = FakeSession(responses)
    client = HttpEnrichmentClient(
        "https://api.example.test/v1/", "secret", session=session, timeout=3.0, **kwargs
    )
    return client, session


def _address():
    return normalize("123 Main St Apt 2, Anytown, CA 90210")


def test_snapshot_from_provider_payload():
    snapshot = EnrichmentSnapshot.from_provider_payload(
        "key", PAYLOAD, fetched_at="2024-05-20T00:00:00+00:00"
    )
    assert snapshot.attributes == {
        "parcel_id": 123456,
        "apn": "12-34-56",
        "square_feet": 1750,
        "bedrooms": 3,
        "bathrooms": 2.5,
        "year_built": 1984,
        "property_type": "SFR",
        "lot_size": 0.17,
        "avm": 650000,
    }
    assert snapshot.owner_name == "JOHN SMITH"
    assert snapshot.address_text == "123 MAIN ST, ANYTOWN, CA 90210"

    obs = snapshot.to_observation()
    assert obs.source is Source.ENRICHMENT_PROVIDER
    assert obs.source_label == "attom"
    assert obs.captured_at == "2024-05-20T00:00:00+00:00"
    assert obs.attributes["parcel_id"] == "123456"
    assert obs.owner_name == "JOHN SMITH"


def test_snapshot_address_from_parts():
    snapshot = EnrichmentSnapshot.from_provider_payload(
        "key",
        {"address": {"line1": "9 ELM RD", "locality": "SPRINGFIELD", "countrySubd": "IL", "postal1": "62704"}},
    )
    assert snapshot.address_text == "9 ELM RD, SPRINGFIELD, IL 62704"
    assert normalize(snapshot.address_text)[1] == normalize("9 Elm Road, Springfield, IL 62704")[1]


def test_get_nested():
    assert get_nested(PAYLOAD, "building.rooms.beds") == 3
    assert get_nested(PAYLOAD, "building.rooms.missing") is None
    assert get_nested(PAYLOAD, "avm.amount.value.deeper") is None


def test_http_client_fetches_and_caches():
    address, key = _address()
    client, session = _client([FakeResponse(payload={"property": [PAYLOAD]})])

    snapshot = client.fetch_snapshot(key, address)
    again = client.fetch_snapshot(key, address)

    assert snapshot is again
    assert snapshot.attributes["year_built"] == 1984
    assert snapshot.identity_key == key
    assert len(session.calls) == 1
    call = session.calls[0]
    assert call["url"] == "https://api.example.test/v1/property/address"
    assert call["params"] == {"address1": "123 main st apt 2", "address2": "anytown, ca 90210"}
    assert call["timeout"] == 3.0
    assert session.headers["apikey"] == "secret"
    assert client.cache_stats()["hits"] == 1
    assert client.lookups_today == 1


@pytest.mark.parametrize(
    "response",
    [FakeResponse(status_code=404), FakeResponse(payload={"property": []}), FakeResponse(payload={})],
)
def test_http_client_no_data_returns_none(response):
    address, key = _address()
    client, _ = _client([response])
    assert client.fetch_snapshot(key, address) is None


def test_http_client_error_status():
    address, key = _address()
    client, _ = _client([FakeResponse(status_code=503)])
    with pytest.raises(EnrichmentUnavailable) as info:
        client.fetch_snapshot(key, address)
    assert info.value.status_code == 503
    assert info.value.identity_key == key


@pytest.mark.parametrize(
    "failure",
    [requests.Timeout("slow"), requests.ConnectionError("refused"), FakeResponse(bad_json=True)],
)
def test_http_client_transport_failures(failure):
    address, key = _address()
    client, _ = _client([failure])
    with pytest.raises(EnrichmentUnavailable):
        client.fetch_snapshot(key, address)


def test_http_client_requires_address_on_cache_miss():
    client, session = _client([])
    with pytest.raises(EnrichmentUnavailable):
        client.fetch_snapshot("k")
    assert session.calls == []


def test_daily_cap_resets_on_new_utc_day():
    now = [datetime(2024, 6, 1, 12, tzinfo=timezone.utc).timestamp()]
    address, key = _address()
    other, other_key = normalize("9 Elm Rd, Springfield, IL 62704")
    client, session = _client(
        [FakeResponse(status_code=404), FakeResponse(status_code=404)],
        daily_cap=1,
        clock=lambda: now[0],
    )

    assert client.fetch_snapshot(key, address) is None
    with pytest.raises(EnrichmentUnavailable) as info:
        client.fetch_snapshot(other_key, other)
    assert info.value.status_code == 429
    assert len(session.calls) == 1

    now[0] += 86400
    assert client.fetch_snapshot(other_key, other) is None
    assert len(session.calls) == 2


def test_factory_without_credentials_is_noop():
    settings = FusionSettings.from_env()
    assert isinstance(get_enrichment_client(settings), NoopEnrichmentClient)
    assert get_enrichment_client().fetch_snapshot("k") is None


def test_factory_with_credentials_builds_http_client(monkeypatch):
    monkeypatch.setenv("PFE_ENRICHMENT_URL", "https://api.example.test/v1")
    monkeypatch.setenv("PFE_ENRICHMENT_API_KEY", "secret")
    monkeypatch.setenv("PFE_ENRICHMENT_DAILY_CAP", "5")
    client = get_enrichment_client(FusionSettings.from_env())
    assert isinstance(client, HttpEnrichmentClient)
    assert client.daily_cap == 5
    assert client.base_url == "https://api.example.test/v1"


def test_protocol_method_has_no_behaviour_of_its_own():
    assert EnrichmentClient.fetch_snapshot(NoopEnrichmentClient(), "k") is None
