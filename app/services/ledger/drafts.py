"""
Draft auto-save.

Drafts live in a keyed repository (``get`` / ``put`` / ``delete``) injected
into the DraftAutoSaver.  ``put`` is last-write-wins on
``timestamps.lastModified``: a save carrying an older modification time than
the stored draft is discarded, whatever order the saves complete in.

Redis is used when DRAFT_STORE_BACKEND is "redis"; the in-memory repository
serves development and tests.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Iterable

import redis

from app.services.ledger.entries import Ledger

logger = logging.getLogger(__name__)

DEFAULT_TTL = 7 * 24 * 3600
KEY_PREFIX = "exec-draft:"


def build_draft_key(facility_id, reporting_period, program, facility_type, facility_name, mode) -> str:
    """``facilityId_reportingPeriod_program_facilityType_facilityName_mode``"""
    parts = (facility_id, reporting_period, program, facility_type, facility_name, mode)
    return "_".join(str(p if p is not None else "").strip() for p in parts)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        ts = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def last_modified(draft: dict | None) -> datetime | None:
    return _parse_ts(((draft or {}).get("timestamps") or {}).get("lastModified"))


def is_newer(incoming: dict, stored: dict | None) -> bool:
    """Whether *incoming* may replace *stored* (ties go to the incoming save)."""
    stored_ts = last_modified(stored)
    if stored_ts is None:
        return True
    incoming_ts = last_modified(incoming)
    return incoming_ts is not None and incoming_ts >= stored_ts


# ── Repositories ─────────────────────────────────────────────────────────


class InMemoryDraftRepository:
    """Dict-backed repository with expiry."""

    def __init__(self, ttl: int = DEFAULT_TTL):
        self.ttl = ttl
        self._store: dict = {}  # key → (value_json, expire_ts)
        self._lock = threading.Lock()

    def get(self, key: str) -> dict | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            raw, expires = entry
            if expires and time.time() > expires:
                self._store.pop(key, None)
                return None
        return json.loads(raw)

    def put(self, key: str, value: dict) -> bool:
        with self._lock:
            entry = self._store.get(key)
            stored = json.loads(entry[0]) if entry else None
            if not is_newer(value, stored):
                return False
            self._store[key] = (json.dumps(value), time.time() + self.ttl)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class RedisDraftRepository:
    """Redis-backed repository; the compare-and-set runs under WATCH."""

    def __init__(self, client, prefix: str = KEY_PREFIX, ttl: int = DEFAULT_TTL):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> dict | None:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding unreadable draft %s", key)
            return None

    def put(self, key: str, value: dict) -> bool:
        redis_key = self._key(key)
        payload = json.dumps(value)

        def _compare_and_set(pipe):
            raw = pipe.get(redis_key)
            stored = json.loads(raw) if raw else None
            if not is_newer(value, stored):
                return False
            pipe.multi()
            pipe.setex(redis_key, self.ttl, payload)
            return True

        return self.client.transaction(_compare_and_set, redis_key, value_from_callable=True)

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))


def get_draft_repository(app):
    """Repository for *app*, created once and kept in ``app.extensions``."""
    repo = app.extensions.get("draft_repository")
    if repo is not None:
        return repo

    ttl = app.config.get("DRAFT_TTL_SECONDS", DEFAULT_TTL)
    backend = app.config.get("DRAFT_STORE_BACKEND", "memory")
    if backend == "redis":
        url = app.config.get("REDIS_URL") or "redis://localhost:6379/0"
        repo = RedisDraftRepository(redis.from_url(url, decode_responses=True), ttl=ttl)
        logger.info("Drafts: using Redis at %s", url.split("@")[-1])
    else:
        repo = InMemoryDraftRepository(ttl=ttl)
    app.extensions["draft_repository"] = repo
    return repo


# ── Auto-saver ───────────────────────────────────────────────────────────


class DraftAutoSaver:
    def __init__(self, repository):
        self.repository = repository

    def save(
        self,
        key: str,
        ledger: Ledger,
        expanded_rows: Iterable[str] = (),
        modified_at=None,
    ) -> bool:
        """Persist *ledger* under *key*.

        *ledger* is immutable, so the serialised form values are a consistent
        snapshot even while further edits are being applied.  Returns False
        when a newer draft is already stored.
        """
        now = _utcnow()
        modified = _parse_ts(modified_at) or now
        value = {
            "formValues": ledger.to_form_values(),
            "currentQuarter": ledger.current_quarter,
            "expandedRows": sorted(set(expanded_rows or ())),
            "timestamps": {
                "savedAt": now.isoformat(),
                "lastModified": modified.isoformat(),
            },
        }
        saved = self.repository.put(key, value)
        if not saved:
            logger.info("Stale draft save discarded", extra={"draft_key": key})
        return saved

    def load(self, key: str) -> dict | None:
        return self.repository.get(key)

    def restore(self, key: str) -> tuple[Ledger, list[str]] | None:
        """Return ``(ledger, expanded_rows)`` for *key*, or None."""
        draft = self.repository.get(key)
        if draft is None:
            return None
        ledger = Ledger.from_form_activities(
            draft.get("formValues") or {}, draft.get("currentQuarter") or "q1",
        )
        return ledger, list(draft.get("expandedRows") or [])

    def discard(self, key: str) -> None:
        self.repository.delete(key)
