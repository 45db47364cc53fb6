# Snapshot_Engine/restore.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError, Page

from shared.schemas import AuthSnapshot, RestoreIssue, RestoreReport
from Snapshot_Engine.codec import SnapshotFormatError, decode_value, load_database
from Snapshot_Engine.connections import DEFAULT_BLOCKED_TIMEOUT_MS, ConnectionRegistry, DatabaseConnection
from Snapshot_Engine.idb_scripts import WRITE_STORE

LOG = logging.getLogger("playwright_auth.restore")

# issues logged individually after a restore; the rest are only counted
MAX_LOGGED_ISSUES = 5


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    delay_ms: int = 500
    navigation_timeout_ms: int = 60000
    blocked_timeout_ms: int = DEFAULT_BLOCKED_TIMEOUT_MS


class RestoreRetriesExhausted(RuntimeError):
    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"IndexedDB restore failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class IndexedDBRestorer:
    """
    One restore attempt:
    navigate -> per database (probe -> upgrade if stores are missing -> write
    each store in its own transaction, one after another) -> close -> reload.

    Store and item failures are collected in the report; anything raised out
    of run() fails the attempt.
    """

    def __init__(
        self,
        page: Page,
        auth: AuthSnapshot,
        registry: ConnectionRegistry,
        policy: Optional[RetryPolicy] = None,
    ):
        self.page = page
        self.auth = auth
        self.registry = registry
        self.policy = policy or RetryPolicy()

    def run(self) -> RestoreReport:
        report = RestoreReport()

        LOG.info("Navigating to %s", self.auth.idbs_url)
        self.page.goto(
            self.auth.idbs_url,
            wait_until="domcontentloaded",
            timeout=self.policy.navigation_timeout_ms,
        )

        for db_name, dump in self.auth.idbs.items():
            try:
                stores = load_database(dump)
            except SnapshotFormatError as e:
                report.issues.append(RestoreIssue(db_name=db_name, error=f"Database error: {e}"))
                continue
            self.restore_database(db_name, stores, report)
            report.databases += 1

        self.registry.close_all()
        self.page.reload(timeout=self.policy.navigation_timeout_ms)
        return report

    def restore_database(self, db_name: str, stores: Dict[str, Dict[str, Any]], report: RestoreReport) -> None:
        probe = self.registry.open(self.page, db_name)
        missing = [s for s in stores if s not in probe.stores]

        conn = probe
        if missing:
            LOG.info(
                "IndexedDB '%s' v%d is missing %d store(s) %s; upgrading to v%d",
                db_name,
                probe.version,
                len(missing),
                missing,
                probe.version + 1,
            )
            conn = self.registry.open(
                self.page,
                db_name,
                version=probe.version + 1,
                create_stores=missing,
            )
            report.stores_created.extend(f"{db_name}/{s}" for s in conn.created)

        for store_name, records in stores.items():
            self.write_store(conn, store_name, records, report)

    def write_store(
        self,
        conn: DatabaseConnection,
        store_name: str,
        records: Dict[str, Any],
        report: RestoreReport,
    ) -> None:
        items: List[Dict[str, Any]] = []
        for raw_key, raw in records.items():
            try:
                key, value = decode_value(raw, tagged=self.auth.tagged)
            except SnapshotFormatError as e:
                report.issues.append(
                    RestoreIssue(db_name=conn.name, store=store_name, key=raw_key, error=f"Key error: {e}")
                )
                continue
            items.append({"key": raw_key if key is None else key, "value": value})

        try:
            result = conn.handle.evaluate(WRITE_STORE, {"store": store_name, "items": items})
        except PlaywrightError as e:
            report.issues.append(RestoreIssue(db_name=conn.name, store=store_name, error=f"Table error: {e}"))
            return

        for err in result.get("errors") or []:
            report.issues.append(
                RestoreIssue(
                    db_name=conn.name,
                    store=store_name,
                    key=err.get("key"),
                    error=str(err.get("error")),
                )
            )
        if result.get("committed"):
            report.stores_written += 1
            report.items_applied += int(result.get("applied") or 0)
            LOG.debug("Wrote %s/%s: %s item(s)", conn.name, store_name, result.get("applied"))


def load_auth(page: Page, auth: AuthSnapshot, policy: Optional[RetryPolicy] = None) -> RestoreReport:
    """
    Restore the snapshot's IndexedDB contents into the page's origin.
    Cookies and localStorage are expected to be seeded through
    new_context(storage_state=auth.storage_state()).

    Raises RestoreRetriesExhausted when no attempt reaches the reload.
    """
    policy = policy or RetryPolicy()
    if not auth.idbs_url:
        LOG.info("Snapshot has no IndexedDB origin URL; nothing to restore")
        return RestoreReport()

    last_error: Optional[BaseException] = None
    for attempt in range(1, policy.max_attempts + 1):
        registry = ConnectionRegistry(policy.blocked_timeout_ms)
        try:
            report = IndexedDBRestorer(page, auth, registry, policy).run()
        except Exception as e:
            last_error = e
            LOG.warning("IndexedDB restore attempt %d/%d failed: %s", attempt, policy.max_attempts, e)
        else:
            report.attempts = attempt
            _log_report(report)
            return report
        finally:
            registry.close_all()

        if attempt < policy.max_attempts:
            time.sleep(policy.delay_ms / 1000.0)

    raise RestoreRetriesExhausted(policy.max_attempts, last_error)


def _log_report(report: RestoreReport) -> None:
    LOG.info(
        "IndexedDB restored: %d database(s), %d store(s), %d item(s), %d store(s) created (attempt %d)",
        report.databases,
        report.stores_written,
        report.items_applied,
        len(report.stores_created),
        report.attempts,
    )
    if report.issues:
        LOG.warning("Failed to load some IndexedDB data (%d issue(s))", len(report.issues))
        for issue in report.issues[:MAX_LOGGED_ISSUES]:
            LOG.warning("  %s", issue)
