from __future__ import annotations

from pathlib import Path
from typing import Any

from license_resolver.services.catalog import Catalog, dump_json, write_text_atomic


def build_license_counts(catalog: Catalog, *, source: str = "public/urls.json") -> dict[str, Any]:
    """Summary of visible active rows per license, in category file order."""
    counts = catalog.visible_license_counts()
    by_bc_id = {str(category.bc_id): counts.get(category.bc_id, 0) for category in catalog.licenses}
    return {
        "source": source,
        "total": sum(counts.values()),
        "by_bc_id": by_bc_id,
    }


def write_or_check(path: Path, payload: dict[str, Any], *, check: bool) -> bool:
    """Return True when ``path`` already matches ``payload``; write it unless checking."""
    rendered = dump_json(payload)
    current = path.read_text(encoding="utf-8") if path.exists() else None
    if current == rendered:
        return True
    if not check:
        write_text_atomic(path, rendered)
    return False
