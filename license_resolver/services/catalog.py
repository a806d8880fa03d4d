from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from license_resolver.core.config import Settings
from license_resolver.schemas.catalog import LicenseCategory, ListingRecord, TagCategory
from license_resolver.schemas.reports import StatusCounts

ModelT = TypeVar("ModelT", bound=BaseModel)


class CatalogError(Exception):
    """Base catalog error."""


class CatalogIntegrityError(CatalogError):
    """Raised when a data file is missing, malformed, or holds invalid entries."""


@dataclass(slots=True)
class Catalog:
    """Canonical listing and category collections, owned by whoever loaded them."""

    records: list[ListingRecord]
    licenses: list[LicenseCategory]
    tags: list[TagCategory] | None = None
    valid_license_ids: frozenset[int] = field(init=False)

    def __post_init__(self) -> None:
        self.valid_license_ids = frozenset(category.bc_id for category in self.licenses)

    def copy(self) -> "Catalog":
        return Catalog(
            records=[record.model_copy(deep=True) for record in self.records],
            licenses=[category.model_copy(deep=True) for category in self.licenses],
            tags=[tag.model_copy(deep=True) for tag in self.tags] if self.tags is not None else None,
        )

    def missing_license(self) -> list[ListingRecord]:
        return [record for record in self.records if record.license is None]

    def is_visible(self, record: ListingRecord) -> bool:
        return record.effective_status == "active" and record.license in self.valid_license_ids

    def visible_records(self) -> list[ListingRecord]:
        return [record for record in self.records if self.is_visible(record)]

    def visible_license_counts(self) -> dict[int, int]:
        counts: dict[int, int] = {}
        for record in self.visible_records():
            license_id = record.license
            if license_id is not None:
                counts[license_id] = counts.get(license_id, 0) + 1
        return counts

    def status_counts(self) -> StatusCounts:
        counts = StatusCounts()
        for record in self.records:
            status = record.effective_status
            setattr(counts, status, getattr(counts, status) + 1)
        return counts


class CatalogStore:
    def __init__(
        self,
        *,
        urls_path: Path,
        licenses_path: Path,
        tags_path: Path | None = None,
    ) -> None:
        self.urls_path = urls_path
        self.licenses_path = licenses_path
        self.tags_path = tags_path

    @classmethod
    def from_settings(cls, settings: Settings) -> "CatalogStore":
        return cls(
            urls_path=settings.resolve_path(settings.urls_path),
            licenses_path=settings.resolve_path(settings.licenses_path),
            tags_path=settings.resolve_path(settings.tags_path),
        )

    def load(self) -> Catalog:
        records = _parse_models(ListingRecord, read_json_array(self.urls_path), self.urls_path)
        licenses = _parse_models(LicenseCategory, read_json_array(self.licenses_path), self.licenses_path)
        tags: list[TagCategory] | None = None
        if self.tags_path is not None and self.tags_path.exists():
            tags = _parse_models(TagCategory, read_json_array(self.tags_path), self.tags_path)
        return Catalog(records=records, licenses=licenses, tags=tags)

    def save(self, catalog: Catalog) -> None:
        write_text_atomic(self.urls_path, dump_records(catalog.records))
        write_text_atomic(self.licenses_path, dump_json([c.model_dump(mode="json") for c in catalog.licenses]))
        if catalog.tags is not None and self.tags_path is not None:
            write_text_atomic(
                self.tags_path,
                dump_json([tag.model_dump(mode="json", exclude_unset=True) for tag in catalog.tags]),
            )


def read_json(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise CatalogIntegrityError(f"required file not found: {path}") from exc
    except OSError as exc:
        raise CatalogIntegrityError(f"failed to read {path}: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CatalogIntegrityError(f"failed to parse JSON from {path}: {exc}") from exc


def read_json_array(path: Path) -> list[Any]:
    payload = read_json(path)
    if not isinstance(payload, list):
        raise CatalogIntegrityError(f"{path} must contain a JSON array")
    return payload


def dump_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def dump_records(records: list[ListingRecord]) -> str:
    return dump_json([record.model_dump(mode="json", exclude_unset=True) for record in records])


def write_text_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _parse_models(model: type[ModelT], rows: list[Any], path: Path) -> list[ModelT]:
    parsed: list[ModelT] = []
    for position, row in enumerate(rows):
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as exc:
            raise CatalogIntegrityError(f"invalid entry #{position} in {path}: {exc.errors()[0]['msg']}") from exc
    return parsed
