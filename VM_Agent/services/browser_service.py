# VM_Agent/services/browser_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from playwright.sync_api import sync_playwright, Browser, BrowserContext, Page, Playwright

from shared.config import DEFAULT_EXTRA_ARGS, browser_type_name
from shared.schemas import AuthSnapshot, RestoreReport
from Snapshot_Engine.capture import create_auth
from Snapshot_Engine.restore import RetryPolicy, load_auth

LOG = logging.getLogger("playwright_auth.browser")


@dataclass
class BrowserSession:
    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    browser_type: str
    headless: bool


def _wait_for_enter() -> None:
    input()


class BrowserService:
    """
    Per-agent Playwright sessions plus the two auth flows:
    - create: open a URL, let the user log in, capture an AuthSnapshot
    - load: seed a fresh context from an AuthSnapshot and restore IndexedDB
    Sync Playwright: every call for one session must come from the same thread.
    """

    def __init__(self):
        self._sessions: Dict[str, BrowserSession] = {}

    # Session lifecycle
    def launch(
        self,
        agent_id: str,
        cfg: Dict[str, Any],
        storage_state: Optional[Dict[str, Any]] = None,
    ) -> BrowserSession:
        if agent_id in self._sessions:
            self.close(agent_id)

        browser_type = browser_type_name(cfg.get("browser"))
        headless = bool(cfg.get("headless", False))
        extra_args: List[str] = list(cfg.get("extra_args") or DEFAULT_EXTRA_ARGS)

        pw = sync_playwright().start()
        try:
            browser = getattr(pw, browser_type).launch(headless=headless, args=extra_args)
            context = browser.new_context(storage_state=storage_state) if storage_state else browser.new_context()
            page = context.new_page()
        except Exception:
            pw.stop()
            raise

        sess = BrowserSession(
            playwright=pw,
            browser=browser,
            context=context,
            page=page,
            browser_type=browser_type,
            headless=headless,
        )
        self._sessions[agent_id] = sess
        LOG.info("Launched %s (headless=%s) for %s", browser_type, headless, agent_id)
        return sess

    def close(self, agent_id: str) -> None:
        sess = self._sessions.pop(agent_id, None)
        if not sess:
            return
        try:
            sess.context.close()
        except Exception:
            pass
        try:
            sess.browser.close()
        except Exception:
            pass
        try:
            sess.playwright.stop()
        except Exception:
            pass

    def close_all(self) -> None:
        for agent_id in list(self._sessions.keys()):
            self.close(agent_id)

    # helper
    def _page(self, agent_id: str) -> Page:
        if agent_id not in self._sessions:
            raise RuntimeError(f"Browser session not launched for agent_id={agent_id}")
        sess = self._sessions[agent_id]
        if sess.page.is_closed():
            sess.page = sess.context.new_page()
        return sess.page

    # Auth flows
    def create(
        self,
        agent_id: str,
        url: str,
        out_file: Path,
        cfg: Dict[str, Any],
        wait_for: Optional[Callable[[], None]] = None,
    ) -> AuthSnapshot:
        """Launch, open url, block on wait_for (Enter on stdin by default), then capture and save."""
        self.launch(agent_id, cfg)
        try:
            page = self._page(agent_id)
            page.goto(url)
            print("Browser launched successfully! Press Enter to save and finish...", flush=True)
            (wait_for or _wait_for_enter)()

            snap = create_auth(self._page(agent_id))
            snap.save(out_file)
            return snap
        finally:
            self.close(agent_id)

    def load(
        self,
        agent_id: str,
        snapshot: AuthSnapshot,
        cfg: Dict[str, Any],
        policy: Optional[RetryPolicy] = None,
    ) -> RestoreReport:
        """Launch with cookies/localStorage seeded and restore IndexedDB. Leaves the session open."""
        self.launch(agent_id, cfg, storage_state=snapshot.storage_state())
        return load_auth(self._page(agent_id), snapshot, policy)

    def wait_closed(self, agent_id: str) -> None:
        self._page(agent_id).wait_for_event("close", timeout=0)

    # Action handlers (remote agent)
    def action_launch(self, agent_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        cfg = params.get("browser_config") or {}
        sess = self.launch(agent_id, cfg)
        return {"status": "launched", "browser": sess.browser_type, "headless": sess.headless}

    def action_goto(self, agent_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = params["url"]
        wait = params.get("wait", "domcontentloaded")  # load | domcontentloaded | networkidle
        timeout_ms = int(params.get("timeout_ms", 60000))
        page = self._page(agent_id)
        page.goto(url, wait_until=wait, timeout=timeout_ms)
        return {"current_url": page.url}

    def action_capture(self, agent_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        params:
          - url (optional): navigate first; the snapshot's idbsUrl is the page URL after that
          - browser_config (optional): launch a fresh session with these settings
          - out_file (optional): also save the snapshot on the agent side
        """
        if params.get("browser_config") is not None or agent_id not in self._sessions:
            self.launch(agent_id, params.get("browser_config") or {})
        if params.get("url"):
            self._page(agent_id).goto(
                params["url"],
                wait_until="domcontentloaded",
                timeout=int(params.get("timeout_ms", 60000)),
            )
        snap = create_auth(self._page(agent_id))
        out_file = params.get("out_file")
        if out_file:
            snap.save(Path(out_file))
        return {"snapshot": snap.to_dict(), "current_url": snap.idbs_url}

    def action_restore(self, agent_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        params:
          - snapshot: AuthSnapshot.to_dict()
          - browser_config: launch settings; the session is relaunched with the snapshot's storage state
          - restore_attempts / restore_delay_ms (optional)
        """
        snapshot = AuthSnapshot.from_dict(params["snapshot"])
        cfg = params.get("browser_config") or {}
        policy = RetryPolicy(
            max_attempts=int(params.get("restore_attempts", 3)),
            delay_ms=int(params.get("restore_delay_ms", 500)),
        )
        report = self.load(agent_id, snapshot, cfg, policy)
        return {"report": report.to_dict(), "current_url": self._page(agent_id).url}

    # Dispatcher
    def execute(self, agent_id: str, action_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        action_name examples:
          - browser.launch / browser.goto / browser.close
          - auth.capture / auth.restore
        """
        verb = action_name.split(".", 1)[1] if "." in action_name else action_name

        if verb == "launch":
            return self.action_launch(agent_id, params)
        if verb == "goto":
            return self.action_goto(agent_id, params)
        if verb == "capture":
            return self.action_capture(agent_id, params)
        if verb == "restore":
            return self.action_restore(agent_id, params)
        if verb == "close":
            self.close(agent_id)
            return {"status": "closed"}

        raise ValueError(f"Unsupported browser action: {action_name}")
