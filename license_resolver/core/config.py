from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RETRY_STATUSES = (403, 408, 425, 429, 500, 502, 503, 504)
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class ConfigurationError(ValueError):
    """Raised when operator options are invalid; always fatal before any I/O."""


class Settings(BaseSettings):
    environment: str = "dev"
    data_root: Path = Path(".")
    urls_path: Path = Path("public/urls.json")
    licenses_path: Path = Path("src/data/licenses.json")
    tags_path: Path = Path("public/tags.json")
    license_counts_path: Path = Path("public/license-counts.json")
    reports_dir: Path = Path("reports")
    user_agent: str = DEFAULT_USER_AGENT
    wayback_available_url: str = "https://archive.org/wayback/available"
    wayback_cdx_url: str = "https://web.archive.org/cdx/search/cdx"
    wayback_snapshot_base_url: str = "https://web.archive.org/web"
    search_url: str = "https://bandcamp.com/search"
    otel_enabled: bool = False
    otel_service_name: str = "license-resolver"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="LR_", extra="ignore")

    def resolve_path(self, path: Path) -> Path:
        return path if path.is_absolute() else self.data_root / path


@lru_cache
def get_settings() -> Settings:
    return Settings()


class ResolveOptions(BaseModel):
    """Pass-scoped operator controls for one resolution pass."""

    write: bool = False
    limit: int | None = Field(default=None, gt=0)
    concurrency: int = Field(default=6, gt=0)
    timeout_seconds: float = Field(default=15.0, gt=0)
    retries: int = Field(default=2, ge=0)
    archive_retries: int = Field(default=2, ge=0)
    retry_statuses: tuple[int, ...] = DEFAULT_RETRY_STATUSES
    backoff_base_seconds: float = Field(default=0.6, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)
    progress_every: int = Field(default=25, gt=0)
    use_archive: bool = True
    use_search_alias: bool = True
    use_domain_consensus: bool = True
    domain_min_known: int = Field(default=20, ge=1)
    domain_min_purity: float = Field(default=1.0, gt=0, le=1)

    @model_validator(mode="after")
    def _check_cross_field_rules(self) -> "ResolveOptions":
        if not self.retry_statuses:
            raise ValueError("retry_statuses must include at least one valid HTTP status")
        invalid = [status for status in self.retry_statuses if not 100 <= status <= 599]
        if invalid:
            raise ValueError(f"retry_statuses contains invalid HTTP statuses: {invalid}")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        if self.write and self.limit is not None:
            raise ValueError("write cannot be combined with limit")
        return self


class PassPolicy(BaseModel):
    """Loop controls for the multi-pass orchestrator."""

    max_passes: int = Field(default=0, ge=0)
    stop_after_no_progress_passes: int = Field(default=3, ge=0)
    sleep_seconds: float = Field(default=45.0, ge=0)


def build_resolve_options(**values: object) -> ResolveOptions:
    return _validated(ResolveOptions, values)


def build_pass_policy(**values: object) -> PassPolicy:
    return _validated(PassPolicy, values)


def parse_status_list(raw: str) -> tuple[int, ...]:
    statuses: list[int] = []
    for item in raw.split(","):
        try:
            value = int(item.strip())
        except ValueError:
            continue
        if 100 <= value <= 599 and value not in statuses:
            statuses.append(value)
    return tuple(statuses)


def _validated(model: type[BaseModel], values: dict[str, object]):
    cleaned = {key: value for key, value in values.items() if value is not None}
    try:
        return model(**cleaned)
    except ValidationError as exc:
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "options"
            problems.append(f"{location}: {error.get('msg')}")
        raise ConfigurationError("; ".join(problems)) from exc
