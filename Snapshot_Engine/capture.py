# Snapshot_Engine/capture.py
from __future__ import annotations

import logging
from typing import Dict, Optional

from playwright.sync_api import Page

from shared.schemas import AuthSnapshot
from Snapshot_Engine.codec import dump_database, encode_value, key_text
from Snapshot_Engine.connections import ConnectionRegistry
from Snapshot_Engine.idb_scripts import DUMP_STORE, LIST_DATABASES

LOG = logging.getLogger("playwright_auth.capture")


def capture_indexeddb(page: Page, *, registry: Optional[ConnectionRegistry] = None) -> Dict[str, str]:
    """
    Dump every IndexedDB database visible to the page's origin.
    Read-only; any failure propagates and aborts the capture.
    Returns { db_name: dump string }.
    """
    own_registry = registry is None
    reg = registry if registry is not None else ConnectionRegistry()
    idbs: Dict[str, str] = {}
    try:
        databases = page.evaluate(LIST_DATABASES) or []
        for info in databases:
            name = info["name"]
            # open at the reported version, or version-less when none is known
            conn = reg.open(page, name, version=info.get("version") or None)

            stores: Dict[str, Dict[str, str]] = {}
            records = 0
            for store_name in conn.store_names:
                dump = conn.handle.evaluate(DUMP_STORE, store_name)
                keys = dump.get("keys") or []
                values = dump.get("values") or []
                stores[store_name] = {
                    key_text(k): encode_value(k, v) for k, v in zip(keys, values)
                }
                records += len(stores[store_name])

            idbs[name] = dump_database(stores)
            LOG.info("Captured IndexedDB '%s' v%d: %d store(s), %d record(s)", name, conn.version, len(stores), records)
    finally:
        if own_registry:
            reg.close_all()
    return idbs


def create_auth(page: Page, *, registry: Optional[ConnectionRegistry] = None) -> AuthSnapshot:
    """Cookies + localStorage of the context, IndexedDB of the page's origin, and the page URL."""
    idbs = capture_indexeddb(page, registry=registry)
    state = page.context.storage_state()
    snap = AuthSnapshot.from_storage_state(state, idbs=idbs, idbs_url=page.url)
    LOG.info(
        "Snapshot: %d cookie(s), %d origin(s), %d IndexedDB database(s) from %s",
        len(snap.cookies),
        len(snap.origins),
        len(snap.idbs),
        snap.idbs_url,
    )
    return snap
