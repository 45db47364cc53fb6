"""
In-memory stand-in for a Playwright Page whose origin has IndexedDB.

Only the in-page scripts from Snapshot_Engine.idb_scripts are understood;
each one is emulated with the same observable behaviour as the browser
(versionchange closes engine connections, blocked opens that time out,
per-item put errors, aborted transactions). tests/test_browser_idb.py runs
the same scripts in Chromium.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from playwright.sync_api import Error as PlaywrightError

from Snapshot_Engine import idb_scripts


def _hkey(key: Any) -> Any:
    return tuple(key) if isinstance(key, list) else key


def _ukey(key: Any) -> Any:
    return list(key) if isinstance(key, tuple) else key


def _sort_key(key: Any):
    if isinstance(key, (int, float)) and not isinstance(key, bool):
        return (0, key, "")
    return (1, 0, str(key))


@dataclass
class FakeStore:
    key_path: Optional[str] = None
    auto_increment: bool = False
    records: Dict[Any, Any] = field(default_factory=dict)
    next_key: int = 1


@dataclass
class FakeDatabase:
    name: str
    version: int = 1
    stores: Dict[str, FakeStore] = field(default_factory=dict)


@dataclass
class FakeConnection:
    db_name: str
    closes_on_versionchange: bool = True
    closed: bool = False


class FakeIndexedDB:
    def __init__(self) -> None:
        self.databases: Dict[str, FakeDatabase] = {}
        self.connections: List[FakeConnection] = []
        self.open_log: List[tuple] = []
        # knobs
        self.ignore_versionchange: Set[str] = set()
        self.abort_stores: Set[str] = set()
        self.fail_open: Set[str] = set()
        self.fail_describe: Set[str] = set()
        # engines without indexedDB.databases(), or whose listing carries no versions
        self.databases_api = True
        self.report_versions = True

    def add_store(
        self,
        db_name: str,
        store_name: str,
        records: Optional[Dict[Any, Any]] = None,
        key_path: Optional[str] = None,
        auto_increment: bool = False,
        version: int = 1,
    ) -> FakeStore:
        db = self.databases.setdefault(db_name, FakeDatabase(name=db_name, version=version))
        store = FakeStore(key_path=key_path, auto_increment=auto_increment)
        for k, v in (records or {}).items():
            store.records[_hkey(k)] = copy.deepcopy(v)
        db.stores[store_name] = store
        return store

    def records(self, db_name: str, store_name: str) -> Dict[Any, Any]:
        return dict(self.databases[db_name].stores[store_name].records)

    def open_connections(self, db_name: Optional[str] = None) -> List[FakeConnection]:
        return [c for c in self.connections if not c.closed and (db_name is None or c.db_name == db_name)]

    def open(self, arg: Dict[str, Any]) -> Dict[str, Any]:
        name = arg["name"]
        version = arg.get("version")
        self.open_log.append((name, version))
        if name in self.fail_open:
            raise PlaywrightError(f"Failed to open database '{name}': UnknownError")

        db = self.databases.get(name)
        current = db.version if db else 0
        target = (current or 1) if version is None else int(version)
        if target < current:
            raise PlaywrightError(f"Failed to open database '{name}': VersionError")

        blocked = False
        created: List[str] = []
        if target > current:
            others = self.open_connections(name)
            for c in others:
                if c.closes_on_versionchange:
                    c.closed = True
            if any(not c.closed for c in others):
                blocked = True
                for h in arg.get("held") or []:
                    h.obj.closed = True
            if any(not c.closed for c in others):
                timeout_ms = arg.get("blockedTimeoutMs")
                raise PlaywrightError(f"Timeout: open of '{name}' still blocked after {timeout_ms} ms")
            if db is None:
                db = FakeDatabase(name=name, version=target)
                self.databases[name] = db
            db.version = target
            for s in arg.get("createStores") or []:
                if s not in db.stores:
                    db.stores[s] = FakeStore(auto_increment=True)
                    created.append(s)

        conn = FakeConnection(db_name=name, closes_on_versionchange=name not in self.ignore_versionchange)
        self.connections.append(conn)
        return {"db": conn, "blocked": blocked, "created": created}

    # per-connection scripts
    def describe(self, conn: FakeConnection) -> Dict[str, Any]:
        db = self.databases[conn.db_name]
        if conn.db_name in self.fail_describe:
            raise PlaywrightError("UnknownError: Internal error opening backing store")
        if conn.closed and db.stores:
            raise PlaywrightError("InvalidStateError: The database connection is closing.")
        return {
            "name": db.name,
            "version": db.version,
            "stores": [
                {"name": n, "keyPath": s.key_path, "autoIncrement": s.auto_increment}
                for n, s in db.stores.items()
            ],
        }

    def dump(self, conn: FakeConnection, store_name: str) -> Dict[str, Any]:
        if conn.closed:
            raise PlaywrightError("InvalidStateError: The database connection is closing.")
        store = self.databases[conn.db_name].stores.get(store_name)
        if store is None:
            raise PlaywrightError(f"NotFoundError: no object store '{store_name}'")
        keys = sorted(store.records.keys(), key=_sort_key)
        return {
            "keys": [_ukey(k) for k in keys],
            "values": [copy.deepcopy(store.records[k]) for k in keys],
        }

    def write(self, conn: FakeConnection, arg: Dict[str, Any]) -> Dict[str, Any]:
        store_name = arg["store"]
        if conn.closed:
            return {"applied": 0, "committed": False,
                    "errors": [{"key": None, "error": "Transaction error: InvalidStateError"}]}
        store = self.databases[conn.db_name].stores.get(store_name)
        if store is None:
            return {"applied": 0, "committed": False,
                    "errors": [{"key": None, "error": "Transaction error: NotFoundError"}]}
        if store_name in self.abort_stores:
            return {"applied": 0, "committed": False,
                    "errors": [{"key": None, "error": "Transaction aborted: AbortError"}]}

        staged = dict(store.records)
        applied = 0
        errors: List[Dict[str, Any]] = []
        for item in arg["items"]:
            value = copy.deepcopy(item["value"])
            if store.key_path is None:
                key = item["key"]
                if key is None:
                    errors.append({"key": str(key), "error": "Key error: DataError"})
                    continue
            elif isinstance(value, dict) and store.key_path in value:
                key = value[store.key_path]
            elif isinstance(value, dict) and store.auto_increment:
                key = store.next_key
                store.next_key += 1
                value[store.key_path] = key
            else:
                errors.append({"key": str(item["key"]), "error": "Key error: DataError"})
                continue
            staged[_hkey(key)] = value
            applied += 1
        store.records = staged
        return {"applied": applied, "committed": True, "errors": errors}


class FakeHandle:
    def __init__(self, idb: FakeIndexedDB, obj: Any):
        self._idb = idb
        self.obj = obj
        self.disposed = False

    def get_property(self, name: str) -> "FakeHandle":
        return FakeHandle(self._idb, self.obj[name])

    def json_value(self) -> Any:
        return copy.deepcopy(self.obj)

    def dispose(self) -> None:
        self.disposed = True

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if self.disposed:
            raise PlaywrightError("JSHandle is disposed")
        conn = self.obj
        if script == idb_scripts.CLOSE_DATABASE:
            conn.closed = True
            return None
        if script == idb_scripts.DESCRIBE_DATABASE:
            return self._idb.describe(conn)
        if script == idb_scripts.DUMP_STORE:
            return self._idb.dump(conn, arg)
        if script == idb_scripts.WRITE_STORE:
            return self._idb.write(conn, arg)
        raise AssertionError("unexpected handle script")


class FakeContext:
    def __init__(self, state: Optional[Dict[str, Any]] = None):
        self.state = state or {"cookies": [], "origins": []}

    def storage_state(self) -> Dict[str, Any]:
        return copy.deepcopy(self.state)


class FakePage:
    def __init__(self, url: str = "about:blank", idb: Optional[FakeIndexedDB] = None, state: Optional[Dict[str, Any]] = None):
        self.url = url
        self.idb = idb or FakeIndexedDB()
        self.context = FakeContext(state)
        self.gotos: List[Dict[str, Any]] = []
        self.reloads = 0
        self.fail_goto = 0  # number of goto calls that raise

    def is_closed(self) -> bool:
        return False

    def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        self.gotos.append({"url": url, "wait_until": wait_until})
        if self.fail_goto:
            self.fail_goto -= 1
            raise PlaywrightError(f"net::ERR_CONNECTION_REFUSED at {url}")
        self.url = url
        return None

    def reload(self, timeout: Optional[float] = None, wait_until: Optional[str] = None):
        self.reloads += 1
        for c in self.idb.connections:
            c.closed = True
        return None

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == idb_scripts.LIST_DATABASES:
            if not self.idb.databases_api:
                raise PlaywrightError("Error: indexedDB.databases() not available")
            return [
                {"name": n, "version": db.version if self.idb.report_versions else None}
                for n, db in self.idb.databases.items()
            ]
        raise AssertionError("unexpected page script")

    def evaluate_handle(self, script: str, arg: Any = None) -> FakeHandle:
        if script == idb_scripts.OPEN_DATABASE:
            return FakeHandle(self.idb, self.idb.open(arg))
        raise AssertionError("unexpected page handle script")
