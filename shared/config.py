# shared/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]

ENV_PREFIX = "PLAYWRIGHT_AUTH_"

DEFAULT_EXTRA_ARGS = ["--disable-blink-features=AutomationControlled"]

# CLI names -> Playwright browser types
BROWSER_TYPES: Dict[str, str] = {
    "chrome": "chromium",
    "chromium": "chromium",
    "firefox": "firefox",
    "safari": "webkit",
    "webkit": "webkit",
}


def _env(name: str) -> Optional[str]:
    v = os.getenv(ENV_PREFIX + name)
    if v is None or not v.strip():
        return None
    return v.strip()


def _env_bool(name: str) -> Optional[bool]:
    v = _env(name)
    if v is None:
        return None
    return v.lower() in ("1", "true", "yes", "on")


def browser_type_name(choice: Optional[str]) -> str:
    """Map chrome/firefox/safari to a Playwright browser type; unknown names fall back to chromium."""
    return BROWSER_TYPES.get((choice or "chrome").lower(), "chromium")


@dataclass
class VaultConfig:
    browser: str = "chrome"
    headless: bool = False
    extra_args: List[str] = field(default_factory=lambda: list(DEFAULT_EXTRA_ARGS))

    # IndexedDB restore retry policy
    restore_attempts: int = 3
    restore_delay_ms: int = 500
    navigation_timeout_ms: int = 60000
    blocked_timeout_ms: int = 5000

    # remote agent (RPyC)
    agent_host: str = "0.0.0.0"
    agent_port: int = 18861

    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None) -> VaultConfig:
    """
    Precedence: overrides (CLI flags) > JSON config file > PLAYWRIGHT_AUTH_* env (.env) > defaults.
    """
    load_dotenv(ROOT / ".env")
    cfg = VaultConfig()

    # env
    v = _env("BROWSER")
    if v:
        cfg.browser = v
    headless = _env_bool("HEADLESS")
    if headless is not None:
        cfg.headless = headless
    v = _env("EXTRA_ARGS")
    if v is not None:
        cfg.extra_args = v.split()
    for attr in ("restore_attempts", "restore_delay_ms", "navigation_timeout_ms", "blocked_timeout_ms", "agent_port"):
        v = _env(attr.upper())
        if v:
            setattr(cfg, attr, int(v))
    v = _env("AGENT_HOST")
    if v:
        cfg.agent_host = v
    v = _env("LOG_LEVEL")
    if v:
        cfg.log_level = v.upper()

    # json file
    if config_path is not None:
        raw = json.loads(Path(config_path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError(f"config must be a JSON object: {config_path}")
        _apply(cfg, raw)

    if overrides:
        _apply(cfg, {k: v for k, v in overrides.items() if v is not None})

    if cfg.restore_attempts < 1:
        raise ValueError("restore_attempts must be >= 1")
    return cfg


def _apply(cfg: VaultConfig, values: Dict[str, Any]) -> None:
    known = {f.name for f in fields(cfg)}
    for k, v in values.items():
        if k in known:
            setattr(cfg, k, v)
