# shared/schemas.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Optional
import json
from datetime import datetime, timezone

# Per-value envelope encoding written by Snapshot_Engine.codec
TAGGED_ENCODING = "tagged-v1"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# Base wire models: JSON-friendly types for files and Host <-> VM exchange
@dataclass
class WireModel:
    # python attribute name -> persisted key (camelCase keys of the auth file)
    wire_aliases: ClassVar[Dict[str, str]] = {}

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for attr, wire in self.wire_aliases.items():
            if attr in d:
                d[wire] = d.pop(attr)
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]):
        d = dict(d)
        for attr, wire in cls.wire_aliases.items():
            if wire in d:
                d[attr] = d.pop(wire)
        # Files written by other tools may carry extra keys; keep only ours
        known = {f.name for f in fields(cls) if f.init}
        return cls(**{k: v for k, v in d.items() if k in known})

    @classmethod
    def from_json(cls, s: str):
        return cls.from_dict(json.loads(s))


SameSite = Literal["Strict", "Lax", "None"]


@dataclass
class CookieRecord(WireModel):
    wire_aliases: ClassVar[Dict[str, str]] = {"http_only": "httpOnly", "same_site": "sameSite"}

    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = -1
    http_only: bool = False
    secure: bool = False
    same_site: SameSite = "Lax"


@dataclass
class LocalStorageItem(WireModel):
    name: str
    value: str


@dataclass
class OriginStorage(WireModel):
    wire_aliases: ClassVar[Dict[str, str]] = {"local_storage": "localStorage"}

    origin: str
    local_storage: List[LocalStorageItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]):
        d = dict(d)
        items = d.pop("localStorage", None) or d.pop("local_storage", None) or []
        return cls(
            origin=d.get("origin", ""),
            local_storage=[LocalStorageItem.from_dict(x) for x in items],
        )


@dataclass
class AuthSnapshot(WireModel):
    """
    Portable session state: Playwright storage state (cookies + localStorage)
    plus one dump string per IndexedDB database of the captured origin.

    On disk:
      { cookies: [...], origins: [...], idbs: {db_name: dump}, idbsUrl: str,
        idbsEncoding: "tagged-v1" }
    Files without idbsEncoding were written by the legacy tool and hold
    untagged values.
    """
    wire_aliases: ClassVar[Dict[str, str]] = {"idbs_url": "idbsUrl", "idbs_encoding": "idbsEncoding"}

    cookies: List[CookieRecord] = field(default_factory=list)
    origins: List[OriginStorage] = field(default_factory=list)
    idbs: Dict[str, str] = field(default_factory=dict)
    idbs_url: str = ""
    idbs_encoding: Optional[str] = TAGGED_ENCODING

    @property
    def tagged(self) -> bool:
        return self.idbs_encoding == TAGGED_ENCODING

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "cookies": [c.to_dict() for c in self.cookies],
            "origins": [o.to_dict() for o in self.origins],
            "idbs": dict(self.idbs),
            "idbsUrl": self.idbs_url,
        }
        if self.idbs_encoding:
            d["idbsEncoding"] = self.idbs_encoding
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]):
        return cls(
            cookies=[CookieRecord.from_dict(c) for c in (d.get("cookies") or [])],
            origins=[OriginStorage.from_dict(o) for o in (d.get("origins") or [])],
            idbs=dict(d.get("idbs") or {}),
            idbs_url=d.get("idbsUrl") or "",
            # absent -> legacy untagged file
            idbs_encoding=d.get("idbsEncoding"),
        )

    @classmethod
    def from_storage_state(
        cls,
        state: Dict[str, Any],
        *,
        idbs: Dict[str, str],
        idbs_url: str,
    ) -> "AuthSnapshot":
        snap = cls.from_dict(state)
        snap.idbs = dict(idbs)
        snap.idbs_url = idbs_url
        snap.idbs_encoding = TAGGED_ENCODING
        return snap

    def storage_state(self) -> Dict[str, Any]:
        """Cookies + origins only, in the shape new_context(storage_state=...) accepts."""
        return {
            "cookies": [c.to_dict() for c in self.cookies],
            "origins": [o.to_dict() for o in self.origins],
        }

    @classmethod
    def load(cls, path: Path) -> "AuthSnapshot":
        return cls.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))

    def save(self, path: Path) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        # ASCII output: cookie and localStorage strings may hold lone surrogates
        p.write_text(json.dumps(self.to_dict(), ensure_ascii=True, indent=2), encoding="utf-8")


# Restore diagnostics
@dataclass
class RestoreIssue(WireModel):
    wire_aliases: ClassVar[Dict[str, str]] = {"db_name": "dbName", "store": "table"}

    db_name: str
    error: str
    store: Optional[str] = None
    key: Optional[str] = None

    def __str__(self) -> str:
        where = self.db_name
        if self.store:
            where += f"/{self.store}"
        if self.key is not None:
            where += f"[{self.key}]"
        return f"{where}: {self.error}"


@dataclass
class RestoreReport(WireModel):
    attempts: int = 0
    databases: int = 0
    stores_written: int = 0
    items_applied: int = 0
    stores_created: List[str] = field(default_factory=list)  # "db/store"
    issues: List[RestoreIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["issues"] = [i.to_dict() for i in self.issues]
        d["ok"] = self.ok
        return d


# Action (Host <-> VM)
ActionName = str


@dataclass
class ActionRequest(WireModel):
    run_id: str
    agent_id: str
    action_id: str
    name: ActionName
    params: Dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=utc_now_iso)


@dataclass
class ActionResult(WireModel):
    run_id: str
    agent_id: str
    action_id: str
    ok: bool
    ts: str = field(default_factory=utc_now_iso)
    error: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
