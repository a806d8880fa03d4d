"""License evidence extraction and reconciliation.

Each strategy scans page text for one kind of signal and returns the set of
known category ids it found. ``decide_license`` combines the per-strategy sets
into a single decision, or reports why it could not.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import ClassVar, Protocol

from license_resolver.core.urls import normalize_cc_license_url
from license_resolver.schemas.catalog import LicenseCategory

LICENSE_TYPE = "license_type"
LICENSE_SECTION = "license_section"
LICENSE_NAME = "license_name"
COMBINED_SINGLE = "combined_single"

NO_LICENSE_EVIDENCE = "no_license_evidence"
AMBIGUOUS_LICENSE_EVIDENCE = "ambiguous_license_evidence"

LICENSE_NAME_TO_SLUG = {
    "attribution_non_commercial_no_derivatives": "by-nc-nd",
    "attribution_non_commercial_share_alike": "by-nc-sa",
    "attribution_non_commercial": "by-nc",
    "attribution_no_derivatives": "by-nd",
    "attribution_share_alike": "by-sa",
    "attribution": "by",
}


@dataclass(slots=True, frozen=True)
class LicenseIndex:
    """Read-only lookup tables over the known license categories."""

    valid_ids: frozenset[int]
    slug_to_id: Mapping[str, int]
    id_to_name: Mapping[int, str]

    @classmethod
    def from_categories(cls, categories: Iterable[LicenseCategory]) -> "LicenseIndex":
        slug_to_id: dict[str, int] = {}
        id_to_name: dict[int, str] = {}
        for category in categories:
            slug_to_id[category.name] = category.bc_id
            id_to_name[category.bc_id] = category.name
        return cls(valid_ids=frozenset(id_to_name), slug_to_id=slug_to_id, id_to_name=id_to_name)

    def name_of(self, bc_id: int) -> str | None:
        return self.id_to_name.get(bc_id)


class EvidenceStrategy(Protocol):
    name: ClassVar[str]

    def extract(self, text: str, index: LicenseIndex) -> frozenset[int]: ...


class LicenseTypeStrategy:
    """Embedded ``license_type`` marker that carries the category id directly."""

    name: ClassVar[str] = LICENSE_TYPE
    patterns = (
        re.compile(r"license_type&quot;:(\d+)"),
        re.compile(r'"license_type":(\d+)'),
    )

    def extract(self, text: str, index: LicenseIndex) -> frozenset[int]:
        found: set[int] = set()
        for pattern in self.patterns:
            for match in pattern.finditer(text):
                value = int(match.group(1))
                if value in index.valid_ids:
                    found.add(value)
        return frozenset(found)


class LicenseSectionStrategy:
    """Creative Commons links inside the page's ``<div id="license">`` block."""

    name: ClassVar[str] = LICENSE_SECTION
    section_re = re.compile(r'<div id="license"[^>]*>(.*?)</div>', re.IGNORECASE | re.DOTALL)
    url_re = re.compile(r"https?://creativecommons\.org/licenses/[a-z-]+/[0-9.]+/?", re.IGNORECASE)

    def extract(self, text: str, index: LicenseIndex) -> frozenset[int]:
        found: set[int] = set()
        for section in self.section_re.finditer(text):
            for url_match in self.url_re.finditer(section.group(1)):
                normalized = normalize_cc_license_url(url_match.group(0))
                if normalized is None:
                    continue
                bc_id = index.slug_to_id.get(normalized["slug"])
                if bc_id is not None:
                    found.add(bc_id)
        return frozenset(found)


class LicenseNameStrategy:
    """Embedded ``license_name`` marker using long-form attribution names."""

    name: ClassVar[str] = LICENSE_NAME
    patterns = (
        re.compile(r"license_name&quot;:&quot;([a-z_]+)&quot;"),
        re.compile(r'"license_name":"([a-z_]+)"'),
    )

    def extract(self, text: str, index: LicenseIndex) -> frozenset[int]:
        found: set[int] = set()
        for pattern in self.patterns:
            for match in pattern.finditer(text):
                slug = LICENSE_NAME_TO_SLUG.get(match.group(1))
                if slug is None:
                    continue
                bc_id = index.slug_to_id.get(slug)
                if bc_id is not None:
                    found.add(bc_id)
        return frozenset(found)


DEFAULT_STRATEGIES: tuple[EvidenceStrategy, ...] = (
    LicenseTypeStrategy(),
    LicenseSectionStrategy(),
    LicenseNameStrategy(),
)


@dataclass(slots=True, frozen=True)
class EvidenceDecision:
    bc_id: int | None
    source: str | None
    reason: str | None
    evidence: Mapping[str, frozenset[int]]

    @property
    def decided(self) -> bool:
        return self.bc_id is not None

    @property
    def choice(self) -> tuple[int, str] | None:
        if self.bc_id is None or self.source is None:
            return None
        return self.bc_id, self.source

    @property
    def ambiguous(self) -> bool:
        return self.reason == AMBIGUOUS_LICENSE_EVIDENCE


def extract_evidence(
    text: str,
    index: LicenseIndex,
    strategies: Sequence[EvidenceStrategy] = DEFAULT_STRATEGIES,
) -> dict[str, frozenset[int]]:
    return {strategy.name: strategy.extract(text, index) for strategy in strategies}


def decide_license(evidence: Mapping[str, frozenset[int]]) -> EvidenceDecision:
    """Pick a single category id, strongest signal first.

    Order: a lone ``license_type`` id; a single id across every strategy; a
    lone ``license_section`` id; a lone ``license_name`` id. Conflicting ids
    are never voted on; they are reported as ambiguous.

    The two weak strategies guard each other: a lone section id only wins
    when the name ids are empty or include it, and the same holds the other
    way round. So section ``{3}`` with name ``{3, 5}`` decides 3, while
    section ``{3}`` with name ``{5}`` is ambiguous.
    """
    type_ids = evidence.get(LICENSE_TYPE, frozenset())
    section_ids = evidence.get(LICENSE_SECTION, frozenset())
    name_ids = evidence.get(LICENSE_NAME, frozenset())

    if len(type_ids) == 1:
        return _decided(type_ids, LICENSE_TYPE, evidence)

    combined = frozenset().union(*evidence.values()) if evidence else frozenset()
    if len(combined) == 1:
        return _decided(combined, COMBINED_SINGLE, evidence)

    if len(section_ids) == 1 and (not name_ids or section_ids <= name_ids):
        return _decided(section_ids, LICENSE_SECTION, evidence)

    if len(name_ids) == 1 and (not section_ids or name_ids <= section_ids):
        return _decided(name_ids, LICENSE_NAME, evidence)

    reason = NO_LICENSE_EVIDENCE if not combined else AMBIGUOUS_LICENSE_EVIDENCE
    return EvidenceDecision(bc_id=None, source=None, reason=reason, evidence=dict(evidence))


def inspect_page(
    text: str,
    index: LicenseIndex,
    strategies: Sequence[EvidenceStrategy] = DEFAULT_STRATEGIES,
) -> EvidenceDecision:
    return decide_license(extract_evidence(text, index, strategies))


def _decided(ids: frozenset[int], source: str, evidence: Mapping[str, frozenset[int]]) -> EvidenceDecision:
    (bc_id,) = ids
    return EvidenceDecision(bc_id=bc_id, source=source, reason=None, evidence=dict(evidence))
