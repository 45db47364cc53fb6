import json
from pathlib import Path

import pytest

from shared import config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.setattr(config, "load_dotenv", lambda *a, **k: False)
    for name in ("BROWSER", "HEADLESS", "EXTRA_ARGS", "RESTORE_ATTEMPTS", "RESTORE_DELAY_MS", "BLOCKED_TIMEOUT_MS",
                 "NAVIGATION_TIMEOUT_MS", "AGENT_HOST", "AGENT_PORT", "LOG_LEVEL"):
        monkeypatch.delenv(config.ENV_PREFIX + name, raising=False)


def test_defaults():
    cfg = config.load_config()
    assert cfg.browser == "chrome"
    assert cfg.restore_attempts == 3
    assert cfg.restore_delay_ms == 500
    assert cfg.extra_args == config.DEFAULT_EXTRA_ARGS


def test_precedence_cli_over_file_over_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("PLAYWRIGHT_AUTH_BROWSER", "firefox")
    monkeypatch.setenv("PLAYWRIGHT_AUTH_HEADLESS", "true")
    monkeypatch.setenv("PLAYWRIGHT_AUTH_RESTORE_ATTEMPTS", "5")
    cfg_file = tmp_path / "config.json"
    cfg_file.write_text(json.dumps({"browser": "safari", "restore_delay_ms": 100, "unknown": 1}), encoding="utf-8")

    cfg = config.load_config(cfg_file, {"browser": "chrome", "headless": None})

    assert cfg.browser == "chrome"
    assert cfg.headless is True
    assert cfg.restore_attempts == 5
    assert cfg.restore_delay_ms == 100


def test_rejects_zero_attempts(monkeypatch):
    monkeypatch.setenv("PLAYWRIGHT_AUTH_RESTORE_ATTEMPTS", "0")
    with pytest.raises(ValueError):
        config.load_config()


def test_browser_names_map_to_playwright_types():
    assert config.browser_type_name("chrome") == "chromium"
    assert config.browser_type_name("Safari") == "webkit"
    assert config.browser_type_name("firefox") == "firefox"
    assert config.browser_type_name("opera") == "chromium"
    assert config.browser_type_name(None) == "chromium"
