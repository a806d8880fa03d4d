import pytest

from license_resolver.jobs.consensus import build_domain_consensus, consensus_for
from license_resolver.schemas.catalog import ListingRecord


def _records(host: str, licenses: list[int | None], start: int = 1) -> list[ListingRecord]:
    return [
        ListingRecord(url_id=start + offset, url=f"https://{host}/album/r{start + offset}", license=license_id)
        for offset, license_id in enumerate(licenses)
    ]


def test_consensus_counts_known_licenses_per_host() -> None:
    records = _records("label.bandcamp.com", [4] * 23 + [3] * 2 + [None] * 5)

    table = build_domain_consensus(records)
    consensus = table["label.bandcamp.com"]

    assert consensus.total == 25
    assert consensus.top_bc_id == 4
    assert consensus.top_count == 23
    assert consensus.purity == pytest.approx(0.92)


def test_consensus_ties_go_to_first_seen_license() -> None:
    records = _records("tie.bandcamp.com", [5, 3, 3, 5])

    assert build_domain_consensus(records)["tie.bandcamp.com"].top_bc_id == 5


def test_consensus_ignores_unknown_license_ids() -> None:
    records = _records("label.bandcamp.com", [4, 4, 99, 99, 99])

    consensus = build_domain_consensus(records, valid_ids={3, 4})["label.bandcamp.com"]

    assert consensus.top_bc_id == 4
    assert consensus.total == 2


def test_consensus_for_applies_thresholds() -> None:
    table = build_domain_consensus(_records("label.bandcamp.com", [4] * 23 + [3] * 2))
    url = "https://label.bandcamp.com/album/new"

    assert consensus_for(table, url, min_known=20, min_purity=0.9).top_bc_id == 4
    assert consensus_for(table, url, min_known=20, min_purity=1.0) is None
    assert consensus_for(table, url, min_known=30, min_purity=0.9) is None
    assert consensus_for(table, "https://elsewhere.bandcamp.com/album/x", min_known=1, min_purity=0.1) is None


def test_consensus_table_is_read_only() -> None:
    table = build_domain_consensus(_records("label.bandcamp.com", [4]))

    with pytest.raises(TypeError):
        table["label.bandcamp.com"] = None  # type: ignore[index]


def test_consensus_requires_minimum_known_samples() -> None:
    table = build_domain_consensus(_records("small.bandcamp.com", [4] * 15))
    url = "https://small.bandcamp.com/album/new"

    assert consensus_for(table, url, min_known=20, min_purity=1.0) is None
    assert consensus_for(table, url, min_known=10, min_purity=1.0).top_bc_id == 4
