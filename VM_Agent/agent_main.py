# VM_Agent/agent_main.py
from __future__ import annotations

import concurrent.futures
import logging
import queue
import threading
from typing import Any, Dict, Optional, Union

import rpyc
from rpyc.utils.server import ThreadedServer
from rpyc.utils.classic import obtain

from shared.schemas import ActionRequest, ActionResult
from VM_Agent.services.browser_service import BrowserService

LOG = logging.getLogger("playwright_auth.agent")

DEFAULT_PORT = 18861


class AuthAgentService(rpyc.Service):
    """
    RPC surface for running capture/restore on a remote machine or VM.
    - execute_action: browser.launch / browser.goto / auth.capture / auth.restore / browser.close

    NOTE:
    ThreadedServer dispatches RPC calls on different threads, but sync
    Playwright must stay on one thread. All browser work goes through the
    ActionWorker queue.
    """

    _browser = BrowserService()

    _worker_boot_lock = threading.Lock()
    _action_q: "queue.Queue[tuple[str, Any, concurrent.futures.Future]]" = queue.Queue()
    _worker_thread: Optional[threading.Thread] = None

    @classmethod
    def _ensure_action_worker(cls) -> None:
        with cls._worker_boot_lock:
            if cls._worker_thread is not None and cls._worker_thread.is_alive():
                return
            cls._worker_thread = threading.Thread(
                target=cls._action_worker_loop,
                name="AuthAgent-ActionWorker",
                daemon=True,
            )
            cls._worker_thread.start()

    @classmethod
    def _action_worker_loop(cls) -> None:
        while True:
            kind, payload, fut = cls._action_q.get()
            try:
                if kind == "close_agent":
                    cls._browser.close(str(payload))
                    fut.set_result(True)
                    continue

                if kind == "close_all":
                    cls._browser.close_all()
                    fut.set_result(True)
                    continue

                if kind == "execute_action":
                    fut.set_result(cls._execute_action_impl(payload))
                    continue

                fut.set_result({"ok": False, "error": f"Unknown kind: {kind}"})

            except Exception as e:
                # caller must never hang
                LOG.exception("action worker: %s", e)
                if not fut.done():
                    fut.set_result({"ok": False, "error": str(e)})

    @classmethod
    def _execute_action_impl(cls, req: ActionRequest) -> Dict[str, Any]:
        """Runs ONLY on the ActionWorker thread."""
        try:
            name = req.name
            if not name.startswith(("browser.", "auth.")):
                raise ValueError(f"Unsupported action namespace: {name}")
            out = cls._browser.execute(req.agent_id, name, dict(req.params or {}))
            return ActionResult(
                run_id=req.run_id,
                agent_id=req.agent_id,
                action_id=req.action_id,
                ok=True,
                outputs=out if isinstance(out, dict) else {"value": out},
            ).to_dict()

        except Exception as e:
            LOG.warning("action %s failed: %s", req.name, e)
            return ActionResult(
                run_id=req.run_id,
                agent_id=req.agent_id,
                action_id=req.action_id,
                ok=False,
                error=str(e),
            ).to_dict()

    @classmethod
    def submit(cls, kind: str, payload: Any) -> Any:
        cls._ensure_action_worker()
        fut: concurrent.futures.Future = concurrent.futures.Future()
        cls._action_q.put((kind, payload, fut))
        return fut.result()

    # Basic
    def exposed_ping(self) -> str:
        return "pong"

    def exposed_close_agent(self, agent_id: str) -> bool:
        return bool(self.submit("close_agent", agent_id))

    # Parsing helpers
    def _parse_action_req(self, x: Union[str, Dict[str, Any]]) -> ActionRequest:
        if isinstance(x, str):
            return ActionRequest.from_json(x)
        return ActionRequest.from_dict(x)

    # Action execution
    def exposed_execute_action(self, req_payload: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
        # resolve netrefs from remote side
        req_payload = obtain(req_payload)
        return self.submit("execute_action", self._parse_action_req(req_payload))


def serve(host: str = "0.0.0.0", port: int = DEFAULT_PORT) -> None:
    print(f"[playwright-auth agent] starting RPyC server on {host}:{port}", flush=True)

    protocol_config = rpyc.core.protocol.DEFAULT_CONFIG.copy()
    protocol_config.update(
        {
            "allow_public_attrs": True,
            "allow_pickle": True,
            "sync_request_timeout": 600,
        }
    )

    server = ThreadedServer(
        AuthAgentService,
        hostname=host,
        port=port,
        protocol_config=protocol_config,
    )
    try:
        server.start()
    finally:
        AuthAgentService.submit("close_all", None)


def connect(host: str, port: int = DEFAULT_PORT, timeout: int = 600):
    """Host-side helper: rpyc connection to a running agent."""
    return rpyc.connect(
        host,
        port,
        config={
            "sync_request_timeout": timeout,
            "allow_public_attrs": True,
            "allow_pickle": True,
        },
    )
