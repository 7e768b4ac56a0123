"""
Trip_Sense.services.persistence_outbox

Outbound queue of shopping-list writes produced by a trip session.

The session updates its in-memory state first and hands the matching write
(complete, annotate, reassign, delete) to the outbox. The outbox tries it
once straight away; if the list store fails, the intent stays pending and is
retried later by reconcile() (tenacity backoff), either on demand or from a
background thread. Writes for the same item are applied strictly in
submission order.

list_store must provide:
    - update_item(item_id, fields) -> item | None   (None = item is gone)
    - delete_item(item_id) -> bool
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from tenacity import Retrying, stop_after_attempt, wait_exponential

from Trip_Sense.config_store import load_config

logger = logging.getLogger(__name__)


class IntentKind(str, Enum):
    COMPLETE = "complete"
    UNCOMPLETE = "uncomplete"
    ANNOTATE = "annotate"
    REASSIGN = "reassign"
    DELETE = "delete"


@dataclass(eq=False)
class PersistenceIntent:
    kind: IntentKind
    item_id: int
    fields: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def describe(self) -> str:
        if self.kind == IntentKind.ANNOTATE:
            return f"annotate item {self.item_id}"
        if self.kind == IntentKind.REASSIGN:
            return f"reassign item {self.item_id} to store {self.fields.get('planned_store_id')}"
        return f"{self.kind.value} item {self.item_id}"

    @classmethod
    def complete(cls, item_id: int) -> "PersistenceIntent":
        return cls(IntentKind.COMPLETE, item_id, {"is_checked_off": True})

    @classmethod
    def uncomplete(cls, item_id: int) -> "PersistenceIntent":
        return cls(IntentKind.UNCOMPLETE, item_id, {"is_checked_off": False})

    @classmethod
    def annotate(cls, item_id: int, notes: str) -> "PersistenceIntent":
        return cls(IntentKind.ANNOTATE, item_id, {"notes": notes})

    @classmethod
    def reassign(cls, item_id: int, store_id: Optional[int]) -> "PersistenceIntent":
        return cls(IntentKind.REASSIGN, item_id, {"planned_store_id": store_id})

    @classmethod
    def delete(cls, item_id: int) -> "PersistenceIntent":
        return cls(IntentKind.DELETE, item_id)


@dataclass(frozen=True)
class ReconcileReport:
    succeeded: int
    failed: int
    pending: int


class PersistenceOutbox:
    def __init__(
        self,
        list_store,
        retry_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
        max_wait_seconds: float = 10.0,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        self.list_store = list_store
        self.retry_attempts = int(retry_attempts)
        self.retry_wait_seconds = float(retry_wait_seconds)
        self.max_wait_seconds = float(max_wait_seconds)

        self._lock = threading.RLock()
        self._reconcile_lock = threading.Lock()
        self._pending: List[PersistenceIntent] = []
        self._in_flight: set = set()
        self._notices: List[str] = []

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, list_store) -> "PersistenceOutbox":
        cfg = load_config()
        return cls(
            list_store,
            retry_attempts=cfg.persistence_retry_attempts,
            retry_wait_seconds=cfg.persistence_retry_wait_seconds,
        )

    # ---------- Read-only views ----------

    @property
    def pending(self) -> List[PersistenceIntent]:
        with self._lock:
            return list(self._pending)

    def has_pending(self, item_id: Optional[int] = None) -> bool:
        with self._lock:
            if item_id is None:
                return bool(self._pending)
            return any(p.item_id == item_id for p in self._pending)

    def notices(self, clear: bool = False) -> List[str]:
        """
        Non-blocking discrepancy messages for the shopper (failed writes,
        items that disappeared from the list).
        """
        with self._lock:
            out = list(self._notices)
            if clear:
                self._notices.clear()
            return out

    # ---------- Submission ----------

    def submit(self, intent: PersistenceIntent) -> bool:
        """
        Queue an intent and try it once. Returns True if it was applied
        immediately. Never raises.
        """
        with self._lock:
            blocked = any(p.item_id == intent.item_id for p in self._pending)
            self._pending.append(intent)
            if blocked:
                logger.debug("Queued %s behind earlier pending write", intent.describe())
                return False
            self._in_flight.add(id(intent))

        ok = False
        try:
            intent.attempts += 1
            self._apply(intent)
            ok = True
        except Exception as exc:
            intent.last_error = str(exc)
            logger.warning("Could not %s, will retry: %s", intent.describe(), exc)
        finally:
            with self._lock:
                self._in_flight.discard(id(intent))
                if ok:
                    self._remove(intent)
        return ok

    # ---------- Reconciliation ----------

    def reconcile(self) -> ReconcileReport:
        """
        Retry pending intents in submission order. A failure blocks later
        intents for the same item until the next pass.
        """
        succeeded = failed = 0
        with self._reconcile_lock:
            with self._lock:
                snapshot = list(self._pending)

            blocked_items = set()
            for intent in snapshot:
                if intent.item_id in blocked_items:
                    continue
                with self._lock:
                    if not any(p is intent for p in self._pending):
                        continue
                    if id(intent) in self._in_flight:
                        blocked_items.add(intent.item_id)
                        continue
                    self._in_flight.add(id(intent))

                try:
                    for attempt in Retrying(
                        stop=stop_after_attempt(self.retry_attempts),
                        wait=wait_exponential(multiplier=self.retry_wait_seconds, max=self.max_wait_seconds),
                        reraise=True,
                    ):
                        with attempt:
                            intent.attempts += 1
                            self._apply(intent)
                except Exception as exc:
                    intent.last_error = str(exc)
                    failed += 1
                    blocked_items.add(intent.item_id)
                    logger.warning(
                        "Still unable to %s after %s attempts: %s",
                        intent.describe(), intent.attempts, exc,
                    )
                    self._add_notice(f"Could not save change ({intent.describe()}); will keep retrying.")
                else:
                    succeeded += 1
                    with self._lock:
                        self._remove(intent)
                finally:
                    with self._lock:
                        self._in_flight.discard(id(intent))

        with self._lock:
            remaining = len(self._pending)
        if succeeded or failed:
            logger.info("Reconcile: %s succeeded, %s failed, %s pending", succeeded, failed, remaining)
        return ReconcileReport(succeeded=succeeded, failed=failed, pending=remaining)

    def start_background(self, interval: Optional[float] = None) -> None:
        """
        Run reconcile() every `interval` seconds on a daemon thread.
        """
        if interval is None:
            interval = load_config().reconcile_interval_seconds
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                args=(float(interval),),
                name="trip-sense-outbox",
                daemon=True,
            )
            self._thread.start()

    def stop_background(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None

    def _run(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.reconcile()
            except Exception:
                logger.exception("Background reconcile pass crashed")

    # ---------- Internals ----------

    def _apply(self, intent: PersistenceIntent) -> None:
        if intent.kind == IntentKind.DELETE:
            removed = self.list_store.delete_item(intent.item_id)
            if removed is False:
                logger.debug("Delete of item %s was a no-op", intent.item_id)
            return

        updated = self.list_store.update_item(intent.item_id, dict(intent.fields))
        if updated is None:
            self._add_notice(f"Item {intent.item_id} is no longer on the list; skipped {intent.kind.value}.")

    def _remove(self, intent: PersistenceIntent) -> None:
        self._pending = [p for p in self._pending if p is not intent]

    def _add_notice(self, message: str) -> None:
        with self._lock:
            self._notices.append(message)
