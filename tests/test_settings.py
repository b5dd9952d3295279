"""Tests for operator settings."""

import pytest

from templar.config import AdvancedSettings
from templar.errors import SettingsError


def test_defaults():
    settings = AdvancedSettings()

    assert settings.workers == 300
    assert settings.target_workers == 10
    assert settings.timeout == 500
    assert settings.retries == 2
    assert settings.retry_delay == 1.0
    assert settings.max_body_size == 10 * 1024 * 1024
    assert settings.headless_tabs == 10
    assert settings.rate_limiter_burst_size == 100
    assert settings.rate_limiter_interval == pytest.approx(0.01)
    assert settings.results_file == "goods.txt"


def test_from_yaml_applies_non_none_overrides(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("workers: 50\nretries: 1\nheadless_tabs: 3\n", encoding="utf-8")

    settings = AdvancedSettings.from_yaml(path, retries=None, timeout=30)

    assert settings.workers == 50
    assert settings.retries == 1
    assert settings.headless_tabs == 3
    assert settings.timeout == 30


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("", encoding="utf-8")
    assert AdvancedSettings.from_yaml(path) == AdvancedSettings()


@pytest.mark.parametrize("content", [
    "workers: 0\n",
    "retries: -1\n",
    "- just\n- a list\n",
    "workers: [unclosed\n",
])
def test_invalid_settings_file(tmp_path, content):
    path = tmp_path / "settings.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(SettingsError):
        AdvancedSettings.from_yaml(path)


def test_missing_settings_file(tmp_path):
    with pytest.raises(SettingsError):
        AdvancedSettings.from_yaml(tmp_path / "missing.yaml")


def test_with_overrides_returns_an_independent_copy():
    base = AdvancedSettings()
    tuned = base.with_overrides(workers=5, timeout=None)

    assert tuned.workers == 5
    assert tuned.timeout == base.timeout
    assert base.workers == 300

    with pytest.raises(SettingsError):
        base.with_overrides(headless_tabs=0)
