# main.py
from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Include project root in import path
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.config import VaultConfig, load_config
from shared.schemas import AuthSnapshot
from Snapshot_Engine.restore import RetryPolicy

__version__ = "1.0.0"

LOG = logging.getLogger("playwright_auth.main")

CLI_AGENT_ID = "cli"


def install_browsers() -> None:
    print("Checking for Playwright browsers...", flush=True)
    subprocess.run(
        [sys.executable, "-m", "playwright", "install", "chromium", "firefox", "webkit"],
        check=True,
    )


def _browser_cfg(cfg: VaultConfig) -> Dict[str, Any]:
    return {"browser": cfg.browser, "headless": cfg.headless, "extra_args": cfg.extra_args}


def cmd_create(args: argparse.Namespace, cfg: VaultConfig) -> int:
    from VM_Agent.services.browser_service import BrowserService

    if args.install or os.getenv("PLAYWRIGHT_AUTH_INSTALL") == "1":
        install_browsers()

    print(f"\nLaunching {cfg.browser} browser...", flush=True)
    svc = BrowserService()
    snap = svc.create(CLI_AGENT_ID, args.url, Path(args.file), _browser_cfg(cfg))
    print(f"Saved authentication state to {args.file} ({len(snap.idbs)} IndexedDB database(s))", flush=True)
    return 0


def cmd_load(args: argparse.Namespace, cfg: VaultConfig) -> int:
    from VM_Agent.services.browser_service import BrowserService

    snapshot = AuthSnapshot.load(Path(args.file))
    policy = RetryPolicy(
        max_attempts=cfg.restore_attempts,
        delay_ms=cfg.restore_delay_ms,
        navigation_timeout_ms=cfg.navigation_timeout_ms,
        blocked_timeout_ms=cfg.blocked_timeout_ms,
    )

    print(f"Launching {cfg.browser} browser with saved auth state...", flush=True)
    svc = BrowserService()
    try:
        report = svc.load(CLI_AGENT_ID, snapshot, _browser_cfg(cfg), policy)
        if not report.ok:
            print(f"Failed to load some IndexedDB data ({len(report.issues)} issue(s))", file=sys.stderr, flush=True)
        print("Browser launched successfully! Close the browser window to exit.", flush=True)
        svc.wait_closed(CLI_AGENT_ID)
    finally:
        svc.close(CLI_AGENT_ID)
    return 0


def cmd_agent(args: argparse.Namespace, cfg: VaultConfig) -> int:
    from VM_Agent.agent_main import serve

    serve(cfg.agent_host, int(cfg.agent_port))
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="playwright-auth",
        description="CLI tool to manage browser authentication with Playwright",
    )
    ap.add_argument("--version", action="version", version=__version__)
    ap.add_argument("--config", default=None, help="optional JSON config file")
    ap.add_argument("--log-level", default=None, help="DEBUG | INFO | WARNING")
    sub = ap.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Launch a browser, log in, and save the session")
    create.add_argument("url", help="URL to navigate to")
    create.add_argument("-b", "--browser", default=None, help="browser to use (chrome, firefox, safari)")
    create.add_argument("-f", "--file", default="auth.json", help="output file name")
    create.add_argument("--headless", action="store_true", default=None)
    create.add_argument("--install", action="store_true", help="run 'playwright install' first")
    create.set_defaults(func=cmd_create)

    load = sub.add_parser("load", help="Launch browser with saved authentication state")
    load.add_argument("file", help="Path to the authentication state file")
    load.add_argument("-b", "--browser", default=None, help="browser to use (chrome, firefox, safari)")
    load.add_argument("--headless", action="store_true", default=None)
    load.add_argument("--attempts", type=int, default=None, help="IndexedDB restore attempts")
    load.set_defaults(func=cmd_load)

    agent = sub.add_parser("agent", help="Serve capture/restore over RPyC")
    agent.add_argument("--host", default=None)
    agent.add_argument("--port", type=int, default=None)
    agent.set_defaults(func=cmd_agent)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {
        "browser": getattr(args, "browser", None),
        "headless": getattr(args, "headless", None),
        "restore_attempts": getattr(args, "attempts", None),
        "agent_host": getattr(args, "host", None),
        "agent_port": getattr(args, "port", None),
        "log_level": args.log_level.upper() if args.log_level else None,
    }
    try:
        cfg = load_config(Path(args.config) if args.config else None, overrides)
    except Exception as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return args.func(args, cfg)
    except KeyboardInterrupt:
        print("\n[playwright-auth] Interrupted by user (Ctrl+C)", flush=True)
        return 130
    except Exception as e:
        LOG.debug("command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
