# Snapshot_Engine/connections.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from playwright.sync_api import Error as PlaywrightError, JSHandle, Page

from Snapshot_Engine.idb_scripts import CLOSE_DATABASE, DESCRIBE_DATABASE, OPEN_DATABASE

LOG = logging.getLogger("playwright_auth.connections")

# how long an open may stay blocked by connections outside the engine
DEFAULT_BLOCKED_TIMEOUT_MS = 5000


class IndexedDBOpenError(RuntimeError):
    def __init__(self, db_name: str, message: str):
        super().__init__(f"Failed to open IndexedDB '{db_name}': {message}")
        self.db_name = db_name


@dataclass
class StoreInfo:
    name: str
    key_path: Any = None  # str | list[str] | None (out-of-line keys)
    auto_increment: bool = False


@dataclass
class DatabaseConnection:
    name: str
    version: int
    handle: JSHandle
    stores: Dict[str, StoreInfo] = field(default_factory=dict)
    created: List[str] = field(default_factory=list)
    blocked: bool = False

    @property
    def store_names(self) -> List[str]:
        return list(self.stores.keys())


class ConnectionRegistry:
    """
    Every IDBDatabase connection the engine opens, as JSHandles in the page.
    Invariant: close_all() leaves nothing open; restore calls it at the end of
    every attempt, successful or not.
    """

    def __init__(self, blocked_timeout_ms: int = DEFAULT_BLOCKED_TIMEOUT_MS) -> None:
        self.blocked_timeout_ms = blocked_timeout_ms
        self._open: Dict[str, List[DatabaseConnection]] = {}

    def __len__(self) -> int:
        return sum(len(v) for v in self._open.values())

    def __enter__(self) -> "ConnectionRegistry":
        return self

    def __exit__(self, *exc) -> None:
        self.close_all()

    def held(self, name: str) -> List[DatabaseConnection]:
        return list(self._open.get(name, []))

    def open(
        self,
        page: Page,
        name: str,
        version: Optional[int] = None,
        create_stores: Iterable[str] = (),
    ) -> DatabaseConnection:
        held = [c.handle for c in self._open.get(name, [])]
        try:
            result = page.evaluate_handle(
                OPEN_DATABASE,
                {
                    "name": name,
                    "version": version,
                    "createStores": list(create_stores),
                    "held": held,
                    "blockedTimeoutMs": self.blocked_timeout_ms,
                },
            )
        except PlaywrightError as e:
            raise IndexedDBOpenError(name, str(e)) from e

        try:
            handle = result.get_property("db")
            blocked = bool(result.get_property("blocked").json_value())
            created = list(result.get_property("created").json_value() or [])
        finally:
            result.dispose()

        if blocked:
            # the open script closed them to get unblocked
            LOG.info("Open of '%s' was blocked; closed %d held connection(s)", name, len(held))
            self.close_database(name)

        try:
            info = handle.evaluate(DESCRIBE_DATABASE)
        except PlaywrightError as e:
            self._close(DatabaseConnection(name=name, version=0, handle=handle))
            raise IndexedDBOpenError(name, f"cannot read schema: {e}") from e

        conn = DatabaseConnection(
            name=name,
            version=int(info.get("version") or 0),
            handle=handle,
            stores={
                s["name"]: StoreInfo(
                    name=s["name"],
                    key_path=s.get("keyPath"),
                    auto_increment=bool(s.get("autoIncrement")),
                )
                for s in (info.get("stores") or [])
            },
            created=created,
            blocked=blocked,
        )
        self._open.setdefault(name, []).append(conn)
        LOG.debug("Opened '%s' v%d (%d stores)", name, conn.version, len(conn.stores))
        return conn

    def close_database(self, name: str) -> int:
        conns = self._open.pop(name, [])
        for conn in conns:
            self._close(conn)
        return len(conns)

    def close_all(self) -> int:
        n = 0
        for name in list(self._open.keys()):
            n += self.close_database(name)
        return n

    @staticmethod
    def _close(conn: DatabaseConnection) -> None:
        # After a navigation the handle's context is gone and so is the connection
        try:
            conn.handle.evaluate(CLOSE_DATABASE)
        except PlaywrightError as e:
            LOG.debug("close '%s': %s", conn.name, e)
        try:
            conn.handle.dispose()
        except PlaywrightError as e:
            LOG.debug("dispose '%s': %s", conn.name, e)
