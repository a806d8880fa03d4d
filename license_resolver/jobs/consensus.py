from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from license_resolver.core.urls import hostname_of
from license_resolver.schemas.catalog import ListingRecord


@dataclass(slots=True, frozen=True)
class DomainConsensus:
    domain: str
    total: int
    top_bc_id: int
    top_count: int

    @property
    def purity(self) -> float:
        return self.top_count / self.total if self.total else 0.0

    def accepts(self, *, min_known: int, min_purity: float) -> bool:
        return self.total >= min_known and self.purity >= min_purity


def build_domain_consensus(
    records: Iterable[ListingRecord],
    *,
    valid_ids: Collection[int] | None = None,
) -> Mapping[str, DomainConsensus]:
    """Majority license per publishing host among records that already have one.

    Built once from a snapshot before a pass; the returned mapping is
    read-only. Ties go to the license seen first in record order.
    """
    buckets: dict[str, dict[int, int]] = {}
    for record in records:
        if record.license is None:
            continue
        if valid_ids is not None and record.license not in valid_ids:
            continue
        host = hostname_of(record.url)
        if not host:
            continue
        counts = buckets.setdefault(host, {})
        counts[record.license] = counts.get(record.license, 0) + 1

    table: dict[str, DomainConsensus] = {}
    for host, counts in buckets.items():
        top_bc_id, top_count = None, 0
        for bc_id, count in counts.items():
            if count > top_count:
                top_bc_id, top_count = bc_id, count
        if top_bc_id is None:
            continue
        table[host] = DomainConsensus(
            domain=host,
            total=sum(counts.values()),
            top_bc_id=top_bc_id,
            top_count=top_count,
        )
    return MappingProxyType(table)


def consensus_for(
    table: Mapping[str, DomainConsensus],
    url: str,
    *,
    min_known: int,
    min_purity: float,
) -> DomainConsensus | None:
    host = hostname_of(url)
    consensus = table.get(host) if host else None
    if consensus is None or not consensus.accepts(min_known=min_known, min_purity=min_purity):
        return None
    return consensus
