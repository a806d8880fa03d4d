from __future__ import annotations

import re
from typing import TypedDict
from urllib.parse import urlparse

CC_LICENSE_HOST = "creativecommons.org"
_NUMERIC_SUFFIX_RE = re.compile(r"-\d+$")
_HTML_ENTITIES = (
    ("&amp;", "&"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&lt;", "<"),
    ("&gt;", ">"),
)


class CCLicenseURL(TypedDict):
    slug: str
    version: str
    canonical: str


def hostname_of(raw_url: str | None) -> str | None:
    if not raw_url:
        return None
    try:
        host = urlparse(raw_url.strip()).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def account_of(raw_url: str | None, *, platform_suffix: str = ".bandcamp.com") -> str | None:
    """Account name encoded in a platform subdomain (``artist.bandcamp.com`` -> ``artist``)."""
    host = hostname_of(raw_url)
    if not host:
        return None
    if host.endswith(platform_suffix):
        return host[: -len(platform_suffix)] or None
    return host


def album_slug_of(raw_url: str | None) -> str | None:
    if not raw_url:
        return None
    try:
        parts = [part for part in urlparse(raw_url.strip()).path.split("/") if part]
    except ValueError:
        return None
    if len(parts) < 2 or parts[0] != "album":
        return None
    return parts[1].lower()


def strip_numeric_suffix(slug: str) -> str | None:
    if not _NUMERIC_SUFFIX_RE.search(slug):
        return None
    return _NUMERIC_SUFFIX_RE.sub("", slug)


def normalize_cc_license_url(raw_url: str) -> CCLicenseURL | None:
    try:
        parsed = urlparse(raw_url.strip())
    except ValueError:
        return None
    if (parsed.hostname or "").lower() != CC_LICENSE_HOST:
        return None

    parts = [part for part in parsed.path.lower().split("/") if part]
    if len(parts) < 3 or parts[0] != "licenses":
        return None
    slug, version = parts[1], parts[2]
    return {
        "slug": slug,
        "version": version,
        "canonical": f"https://{CC_LICENSE_HOST}/licenses/{slug}/{version}/",
    }


def decode_html_entities(text: str) -> str:
    for entity, replacement in _HTML_ENTITIES:
        text = text.replace(entity, replacement)
    return text
