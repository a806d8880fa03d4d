from pathlib import Path

import pytest

from license_resolver.core.config import (
    DEFAULT_RETRY_STATUSES,
    ConfigurationError,
    Settings,
    build_pass_policy,
    build_resolve_options,
    parse_status_list,
)


def test_resolve_options_defaults() -> None:
    options = build_resolve_options(concurrency=None, timeout_seconds=None)

    assert options.write is False
    assert options.concurrency == 6
    assert options.timeout_seconds == 15
    assert options.retries == 2
    assert options.archive_retries == 2
    assert options.retry_statuses == DEFAULT_RETRY_STATUSES
    assert options.backoff_base_seconds == 0.6
    assert options.backoff_max_seconds == 8
    assert options.progress_every == 25
    assert options.domain_min_known == 20
    assert options.domain_min_purity == 1.0
    assert options.use_archive and options.use_search_alias and options.use_domain_consensus


def test_invalid_options_report_every_problem() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        build_resolve_options(concurrency=0, domain_min_purity=1.5)

    message = str(excinfo.value)
    assert "concurrency" in message
    assert "domain_min_purity" in message


@pytest.mark.parametrize(
    "values, fragment",
    [
        ({"write": True, "limit": 5}, "write cannot be combined with limit"),
        ({"backoff_base_seconds": 5, "backoff_max_seconds": 1}, "backoff_max_seconds"),
        ({"retry_statuses": ()}, "at least one"),
    ],
)
def test_cross_field_rules(values: dict, fragment: str) -> None:
    with pytest.raises(ConfigurationError, match=fragment):
        build_resolve_options(**values)


def test_pass_policy_defaults_and_validation() -> None:
    policy = build_pass_policy()
    assert (policy.max_passes, policy.stop_after_no_progress_passes, policy.sleep_seconds) == (0, 3, 45)

    with pytest.raises(ConfigurationError, match="max_passes"):
        build_pass_policy(max_passes=-1)


def test_parse_status_list_drops_invalid_entries() -> None:
    assert parse_status_list("429, 503,abc,99,503,700") == (429, 503)


def test_settings_read_prefixed_environment(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LR_DATA_ROOT", str(tmp_path))
    monkeypatch.setenv("LR_OTEL_ENABLED", "true")

    settings = Settings()

    assert settings.data_root == tmp_path
    assert settings.otel_enabled is True
    assert settings.resolve_path(settings.urls_path) == tmp_path / "public" / "urls.json"
    assert settings.resolve_path(Path("/abs/file.json")) == Path("/abs/file.json")
