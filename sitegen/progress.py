from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Dict, Optional

import redis

from sitegen import config
from sitegen.models import GenerationProgress, RunState

log = logging.getLogger(__name__)


def _advance(current: GenerationProgress, **changes) -> GenerationProgress:
    """Apply changes to a progress record without ever moving the percentage backwards."""
    data = current.model_dump()
    fallback_stage = changes.pop("fallback_stage", None)
    for key, value in changes.items():
        if value is not None:
            data[key] = value
    data["percent"] = max(current.percent, min(100, int(data["percent"])))
    if fallback_stage and fallback_stage not in data["fallback_stages"]:
        data["fallback_stages"] = list(data["fallback_stages"]) + [fallback_stage]
    data["updated_at"] = time.time()
    return GenerationProgress(**data)


class ProgressStore:
    """In-process per-run progress records."""

    def __init__(self, max_finished: int = 500):
        self._lock = threading.Lock()
        self._runs: "OrderedDict[str, GenerationProgress]" = OrderedDict()
        self._max_finished = max_finished

    def create(self, run_id: str, website_id: str) -> GenerationProgress:
        record = GenerationProgress(run_id=run_id, website_id=website_id, message="Queued")
        with self._lock:
            self._runs[run_id] = record
            self._prune()
        return record

    def update(
        self,
        run_id: str,
        *,
        state: Optional[RunState] = None,
        percent: Optional[int] = None,
        message: Optional[str] = None,
        fallback_stage: Optional[str] = None,
        error: Optional[str] = None,
    ) -> GenerationProgress:
        with self._lock:
            current = self._runs.get(run_id)
            if current is None:
                raise KeyError(run_id)
            record = _advance(
                current, state=state, percent=percent, message=message, fallback_stage=fallback_stage, error=error
            )
            self._runs[run_id] = record
        return record

    def get(self, run_id: str) -> Optional[GenerationProgress]:
        with self._lock:
            return self._runs.get(run_id)

    def _prune(self) -> None:
        finished = [rid for rid, rec in self._runs.items() if rec.done]
        for rid in finished[: max(0, len(finished) - self._max_finished)]:
            self._runs.pop(rid, None)


class RedisProgressStore:
    """Progress records in Redis so any API worker can answer a progress poll."""

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None, prefix: str = "sitegen:progress"):
        self.redis_url = (redis_url or config.REDIS_URL).strip()
        self.ttl_seconds = int(ttl_seconds or config.PROGRESS_TTL_SECS)
        self.prefix = prefix
        self._lock = threading.Lock()
        # Lazy connection; nothing hits the network until the first command
        self._client = redis.from_url(self.redis_url, decode_responses=True)

    def _key(self, run_id: str) -> str:
        return f"{self.prefix}:{run_id}"

    def _write(self, record: GenerationProgress) -> None:
        self._client.setex(self._key(record.run_id), self.ttl_seconds, record.model_dump_json())

    def create(self, run_id: str, website_id: str) -> GenerationProgress:
        record = GenerationProgress(run_id=run_id, website_id=website_id, message="Queued")
        self._write(record)
        return record

    def update(self, run_id: str, **changes) -> GenerationProgress:
        with self._lock:
            current = self.get(run_id)
            if current is None:
                raise KeyError(run_id)
            record = _advance(current, **changes)
            self._write(record)
        return record

    def get(self, run_id: str) -> Optional[GenerationProgress]:
        raw = self._client.get(self._key(run_id))
        if not raw:
            return None
        try:
            return GenerationProgress(**json.loads(raw))
        except (ValueError, TypeError) as exc:
            log.warning("progress: corrupt record for %s: %s", run_id, exc)
            return None


def create_progress_store(redis_url: Optional[str] = None):
    """Redis-backed store when REDIS_URL is set and answers a ping, else in-process."""
    url = (redis_url if redis_url is not None else config.REDIS_URL).strip()
    if url:
        try:
            store = RedisProgressStore(url)
            store._client.ping()
            log.info("progress: using Redis at %s", url)
            return store
        except redis.RedisError as exc:
            log.warning("progress: Redis unavailable (%s); using in-process store", exc)
    return ProgressStore()
