import logging
from datetime import datetime, timezone

import pytest

from property_fusion.enrichment.snapshot import EnrichmentSnapshot
from property_fusion.errors import MalformedAddress
from property_fusion.fusion import fuse, order_observations, remove_distress_signal
from property_fusion.models import RawPropertyObservation, Source
from property_fusion.normalize import normalize
from property_fusion.policy import ConflictResolutionPolicy

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
ADDRESS = "123 Main St, Anytown, CA 90210"


def _obs(source, captured_at="2024-05-01T00:00:00+00:00", address=ADDRESS, **kwargs):
    return RawPropertyObservation(
        source=source, address_text=address, captured_at=captured_at, **kwargs
    )


def _existing(source, **attributes):
    record, _ = fuse(None, [_obs(source, attributes=attributes)], now=NOW)
    return record


def test_two_sources_fuse_into_one_record():
    a = _obs(Source.LISTING_SITE, attributes={"squareFeet": 1750})
    b = _obs(
        Source.RECORD_FEED,
        address="123 Main Street, Anytown, CA 90210",
        owner_name="John Smith",
        distress_signals={"tax-lien"},
    )
    assert normalize(a.address_text)[1] == normalize(b.address_text)[1]

    record, report = fuse(None, [a, b], now=NOW)

    assert record.identity_key == normalize(ADDRESS)[1]
    assert record.fields["square_feet"] == 1750
    assert record.provenance["square_feet"].source == "listing-site"
    assert record.fields["owner_name"] == "John Smith"
    assert record.provenance["owner_name"].source == "record-feed"
    assert record.distress_signals == {"tax-lien"}
    assert record.observation_count == 2
    assert record.created_at == "2024-06-01T00:00:00+00:00"
    assert record.last_fused_at == "2024-06-01T00:00:00+00:00"
    assert sorted(report.changed_fields()) == ["distress_signals", "owner_name", "square_feet"]
    assert report.rejected == []
    assert report.policy_version == "1"


def test_lower_priority_conflict_is_rejected():
    existing = _existing(Source.RECORD_FEED, year_built=1984)

    record, report = fuse(existing, [_obs(Source.LISTING_SITE, attributes={"yearBuilt": 1992})], now=NOW)

    assert record.fields["year_built"] == 1984
    assert record.provenance["year_built"].source == "record-feed"
    assert report.changes == []
    [rejected] = report.rejected
    assert rejected.field == "year_built"
    assert rejected.value == 1992
    assert rejected.source == "listing-site"
    assert rejected.reason == "lower-priority"


def test_implausible_jump_is_rejected_and_logged(caplog):
    caplog.set_level(logging.WARNING, logger="pfe.fusion")
    existing = _existing(Source.LISTING_SITE, square_feet=1800)

    record, report = fuse(existing, [_obs(Source.RECORD_FEED, attributes={"sqft": 18000})], now=NOW)

    assert record.fields["square_feet"] == 1800
    assert record.provenance["square_feet"].source == "listing-site"
    [rejected] = report.rejected
    assert rejected.reason == "implausible"
    assert "order-of-magnitude" in rejected.detail
    assert any("implausible" in r.getMessage() for r in caplog.records)


def test_implausible_from_equal_priority_source():
    existing = _existing(Source.LISTING_SITE, square_feet=1800)
    record, report = fuse(existing, [_obs(Source.LISTING_SITE, attributes={"sqft": 18000})], now=NOW)
    assert record.fields["square_feet"] == 1800
    assert [r.reason for r in report.rejected] == ["implausible"]


def test_out_of_bounds_value_never_adopted():
    record, report = fuse(None, [_obs(Source.RECORD_FEED, attributes={"year_built": 1450})], now=NOW)
    assert "year_built" not in record.fields
    assert report.rejected[0].detail == "below minimum 1600"


def test_implausible_top_candidate_falls_through_to_next():
    existing = _existing(Source.LISTING_SITE, square_feet=1800)
    record, report = fuse(
        existing,
        [
            _obs(Source.ENRICHMENT_PROVIDER, attributes={"sqft": 18000}),
            _obs(Source.RECORD_FEED, attributes={"sqft": 1850}),
        ],
        now=NOW,
    )
    assert record.fields["square_feet"] == 1850
    assert record.provenance["square_feet"].source == "record-feed"
    assert [r.reason for r in report.rejected] == ["implausible"]


@pytest.mark.parametrize("reverse", [False, True])
def test_priority_respected_regardless_of_input_order(reverse):
    observations = [
        _obs(Source.LISTING_SITE, attributes={"sqft": 2000}, captured_at="2024-05-30T00:00:00+00:00"),
        _obs(Source.RECORD_FEED, attributes={"sqft": 1900}, captured_at="2024-01-01T00:00:00+00:00"),
    ]
    if reverse:
        observations.reverse()
    record, report = fuse(None, observations, now=NOW)
    assert record.fields["square_feet"] == 1900
    assert record.provenance["square_feet"].source == "record-feed"
    assert [(r.value, r.reason) for r in report.rejected] == [(2000, "outranked")]


def test_newest_capture_wins_within_a_tier():
    record, _ = fuse(
        None,
        [
            _obs(Source.LISTING_SITE, attributes={"sqft": 2000}, captured_at="2024-01-01T00:00:00+00:00"),
            _obs(Source.LISTING_SITE, attributes={"sqft": 2100}, captured_at="2024-03-01T00:00:00+00:00"),
        ],
        now=NOW,
    )
    assert record.fields["square_feet"] == 2100
    assert record.provenance["square_feet"].captured_at == "2024-03-01T00:00:00+00:00"


def test_no_regression_to_lower_priority_source():
    existing = _existing(Source.RECORD_FEED, bedrooms=3)
    for source in (Source.AUCTION_SITE, Source.LISTING_SITE, Source.MANUAL):
        updated, _ = fuse(existing, [_obs(source, attributes={"beds": 4})], now=NOW)
        assert updated.fields["bedrooms"] == 3
        assert updated.provenance["bedrooms"].source == "record-feed"


def test_equal_priority_keeps_existing_value():
    existing = _existing(Source.LISTING_SITE, bedrooms=3)
    updated, report = fuse(
        existing,
        [_obs(Source.LISTING_SITE, attributes={"beds": 4}, captured_at="2024-05-20T00:00:00+00:00")],
        now=NOW,
    )
    assert updated.fields["bedrooms"] == 3
    assert [r.reason for r in report.rejected] == ["existing-kept"]


def test_higher_priority_source_replaces_value():
    existing = _existing(Source.RECORD_FEED, year_built=1984)
    snapshot = EnrichmentSnapshot(
        identity_key=existing.identity_key,
        attributes={"year_built": 1985, "apn": "12-34"},
        fetched_at="2024-05-20T00:00:00+00:00",
    )

    record, report = fuse(existing, [], snapshot, now=NOW)

    assert record.fields["year_built"] == 1985
    assert record.fields["apn"] == "12-34"
    assert record.provenance["year_built"].source == "enrichment-provider"
    change = next(c for c in report.changes if c.field == "year_built")
    assert (change.old_value, change.new_value, change.winning_source) == (
        1984,
        1985,
        "enrichment-provider",
    )
    assert report.enrichment_used
    assert record.observation_count == existing.observation_count


def test_confirmation_upgrades_provenance_without_change():
    existing = _existing(Source.LISTING_SITE, bedrooms=3)
    record, report = fuse(existing, [_obs(Source.RECORD_FEED, attributes={"beds": 3})], now=NOW)
    assert record.provenance["bedrooms"].source == "record-feed"
    assert report.changes == []


def test_fusion_is_deterministic_and_idempotent():
    observations = [
        _obs(Source.LISTING_SITE, attributes={"sqft": 2000, "beds": 3}, owner_name="Smith, John A."),
        _obs(Source.RECORD_FEED, attributes={"sqft": 1900}, owner_name="John Smith", distress_signals={"tax-lien"}),
        _obs(
            Source.AUCTION_SITE,
            distress_signals={"auction-scheduled"},
            contacts=({"type": "phone", "value": "555-123-4567", "confidence": 0.4},),
        ),
    ]
    existing = _existing(Source.MANUAL, lot_size=5000)
    snapshot_before = existing.to_dict()

    first, _ = fuse(existing, observations, now=NOW)
    second, _ = fuse(existing, list(reversed(observations)), now=NOW)
    assert first == second
    assert existing.to_dict() == snapshot_before

    again, report = fuse(first, observations, now=NOW)
    assert report.changes == []
    assert again.fields == first.fields
    assert again.provenance == first.provenance
    assert again.distress_signals == first.distress_signals
    assert again.contacts == first.contacts
    assert again.sources == first.sources


def test_distress_signals_only_grow():
    existing, _ = fuse(None, [_obs(Source.AUCTION_SITE, distress_signals={"Tax Lien"})], now=NOW)
    updated, report = fuse(existing, [_obs(Source.LISTING_SITE, attributes={"beds": 2})], now=NOW)
    assert updated.distress_signals == {"tax-lien"}
    assert "distress_signals" not in report.changed_fields()

    grown, report = fuse(updated, [_obs(Source.MANUAL, distress_signals={"vacant"})], now=NOW)
    assert grown.distress_signals == {"tax-lien", "vacant"}
    assert len(grown.distress_signals) >= len(updated.distress_signals)
    change = next(c for c in report.changes if c.field == "distress_signals")
    assert change.old_value == ["tax-lien"]
    assert change.winning_source == "manual"


def test_owner_name_prefers_structured_form_on_tie():
    record, report = fuse(
        None,
        [
            _obs(Source.RECORD_FEED, owner_name="Smith, John A.", captured_at="2024-05-02T00:00:00+00:00"),
            _obs(Source.RECORD_FEED, owner_name="John Smith", captured_at="2024-05-01T00:00:00+00:00"),
        ],
        now=NOW,
    )
    assert record.fields["owner_name"] == "John Smith"
    assert record.provenance["owner_name"].captured_at == "2024-05-01T00:00:00+00:00"
    # Same person, different spelling: not reported as a conflict.
    assert report.rejected == []


def test_owner_name_held_on_record_is_kept_against_equal_priority_spelling():
    existing, _ = fuse(None, [_obs(Source.RECORD_FEED, owner_name="Smith, John A.")], now=NOW)
    record, report = fuse(
        existing,
        [_obs(Source.RECORD_FEED, owner_name="John Smith", captured_at="2024-05-03T00:00:00+00:00")],
        now=NOW,
    )
    assert record.fields["owner_name"] == "Smith, John A."
    assert "owner_name" not in report.changed_fields()


def test_owner_name_from_higher_priority_source_wins():
    record, report = fuse(
        None,
        [
            _obs(Source.RECORD_FEED, owner_name="Smith, John A."),
            _obs(Source.LISTING_SITE, owner_name="Jane Doe"),
        ],
        now=NOW,
    )
    assert record.fields["owner_name"] == "Smith, John A."
    assert [r.value for r in report.rejected] == ["Jane Doe"]


def test_contacts_merge_keeps_best_entry():
    record, report = fuse(
        None,
        [
            _obs(Source.LISTING_SITE, contacts=({"type": "phone", "value": "(555) 123-4567", "confidence": 0.5},)),
            _obs(Source.RECORD_FEED, contacts=({"type": "phone", "value": "1 555 123 4567", "confidence": 0.9},)),
        ],
        now=NOW,
    )
    [contact] = record.contacts
    assert contact.confidence == 0.9
    assert contact.source == "record-feed"
    change = next(c for c in report.changes if c.field == "contacts")
    assert change.winning_source == "record-feed"


def test_sources_are_capped_newest_first():
    policy = ConflictResolutionPolicy(max_sources=3)
    observations = [
        _obs(
            Source.LISTING_SITE,
            source_url=f"https://listings.example/{day}",
            captured_at=f"2024-05-0{day}T00:00:00+00:00",
        )
        for day in range(1, 6)
    ]
    record, _ = fuse(None, observations, policy=policy, now=NOW)
    assert [s.source_url for s in record.sources] == [
        "https://listings.example/5",
        "https://listings.example/4",
        "https://listings.example/3",
    ]


def test_unrecognized_attributes_are_held_for_review():
    record, _ = fuse(None, [_obs(Source.LISTING_SITE, attributes={"pool": "yes", "beds": 2})], now=NOW)
    assert record.unreviewed_extras == {"listing-site": {"pool": "yes"}}
    assert "pool" not in record.fields


def test_unnormalizable_group_raises():
    with pytest.raises(MalformedAddress):
        fuse(None, [_obs(Source.LISTING_SITE, address="")], now=NOW)


def test_order_observations_by_priority_then_recency():
    listing = _obs(Source.LISTING_SITE, captured_at="2024-05-30T00:00:00+00:00")
    old_record = _obs(Source.RECORD_FEED, captured_at="2024-01-01T00:00:00+00:00")
    new_record = _obs(Source.RECORD_FEED, captured_at="2024-04-01T00:00:00+00:00")
    assert order_observations([listing, old_record, new_record]) == [new_record, old_record, listing]


def test_remove_distress_signal_is_explicit():
    record, _ = fuse(None, [_obs(Source.AUCTION_SITE, distress_signals={"tax-lien", "auction-scheduled"})], now=NOW)

    updated, report = remove_distress_signal(record, "Tax Lien", now=NOW)
    assert updated.distress_signals == {"auction-scheduled"}
    assert record.distress_signals == {"tax-lien", "auction-scheduled"}
    assert report.changes[0].winning_source == "manual"

    unchanged, report = remove_distress_signal(updated, "vacant", now=NOW)
    assert unchanged.distress_signals == {"auction-scheduled"}
    assert not report.has_changes
