# hirehub/services/queue.py
"""
Evaluation job queue.

Dispatch goes through a Redis Stream consumed by a consumer group
(`worker_streams.py`), with a dead-letter stream for exhausted messages.
Per-job bookkeeping lives in a job store:

    RedisJobStore     one hash per job + one sorted set per state (score = time)
    InMemoryJobStore  same contract, for inline dispatch and tests
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import ResponseError

from hirehub.core.config import settings
from hirehub.models.queue import QUEUE_STATES, JobRecord

logger = logging.getLogger(__name__)

QUEUE_NAME = "resume-evaluation"
STREAM_KEY = "evaluations:stream"
GROUP_NAME = "evaluations:group"
DLQ_KEY = "evaluations:dlq"


def get_redis_client(url: Optional[str] = None) -> aioredis.Redis:
    return aioredis.from_url(url or settings.REDIS_URL, decode_responses=True)


async def ensure_group_exists(client: aioredis.Redis, stream: str = STREAM_KEY, group: str = GROUP_NAME) -> None:
    # XGROUP CREATE <stream> <group> $ MKSTREAM
    try:
        await client.xgroup_create(name=stream, groupname=group, id="$", mkstream=True)
    except ResponseError as exc:
        # group already exists
        if "BUSYGROUP" in str(exc).upper():
            return
        raise


async def enqueue_evaluation(client: aioredis.Redis, evaluation_id: str, file_key: Optional[str],
                             ocr_text: Optional[str] = None) -> str:
    """Add an evaluation to the stream; returns the stream entry id."""
    entry = {
        "payload": json.dumps(
            {"evaluation_id": evaluation_id, "file_key": file_key, "ocr_text": ocr_text},
            ensure_ascii=False,
        ),
        "evaluation_id": evaluation_id,
    }
    sid = await client.xadd(STREAM_KEY, entry)
    logger.info("Evaluation %s enqueued as %s", evaluation_id, sid)
    return str(sid)


async def move_to_dlq(client: aioredis.Redis, stream_id: str, payload: Dict[str, Any], reason: str) -> str:
    entry = {
        "original_id": stream_id,
        "payload": json.dumps(payload, ensure_ascii=False),
        "reason": reason,
    }
    return await client.xadd(DLQ_KEY, entry)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(Protocol):
    queue_name: str

    async def create(self, job_id: str, payload: Dict[str, Any], max_attempts: int = 3) -> JobRecord: ...

    async def get(self, job_id: str) -> Optional[JobRecord]: ...

    async def set_state(self, job_id: str, state: str, **fields: Any) -> None: ...

    async def update_progress(self, job_id: str, progress: int) -> None: ...

    async def record_attempt(self, job_id: str) -> int: ...

    async def count(self, state: str) -> int: ...

    async def list_ids(self, state: str, older_than: Optional[float] = None, limit: int = 100) -> List[str]: ...

    async def remove(self, job_id: str) -> bool: ...


class InMemoryJobStore:
    def __init__(self, queue_name: str = QUEUE_NAME):
        self.queue_name = queue_name
        self._records: Dict[str, JobRecord] = {}
        self._entered: Dict[str, float] = {}

    async def create(self, job_id: str, payload: Dict[str, Any], max_attempts: int = 3) -> JobRecord:
        rec = JobRecord(id=job_id, payload=payload, max_attempts=max_attempts, created_at=_now())
        self._records[job_id] = rec
        self._entered[job_id] = time.time()
        return rec

    async def get(self, job_id: str) -> Optional[JobRecord]:
        return self._records.get(job_id)

    async def set_state(self, job_id: str, state: str, **fields: Any) -> None:
        if state not in QUEUE_STATES:
            raise ValueError(f"Unknown queue state: {state}")
        rec = self._records.get(job_id)
        if rec is None:
            return
        self._records[job_id] = rec.model_copy(update={"state": state, **fields})
        self._entered[job_id] = time.time()

    async def update_progress(self, job_id: str, progress: int) -> None:
        rec = self._records.get(job_id)
        if rec is not None:
            self._records[job_id] = rec.model_copy(update={"progress": progress})

    async def record_attempt(self, job_id: str) -> int:
        rec = self._records.get(job_id)
        if rec is None:
            return 0
        self._records[job_id] = rec.model_copy(update={"attempts": rec.attempts + 1})
        return rec.attempts + 1

    async def count(self, state: str) -> int:
        return sum(1 for r in self._records.values() if r.state == state)

    async def list_ids(self, state: str, older_than: Optional[float] = None, limit: int = 100) -> List[str]:
        ids = sorted(
            (jid for jid, r in self._records.items() if r.state == state),
            key=lambda jid: self._entered[jid],
        )
        if older_than is not None:
            ids = [jid for jid in ids if self._entered[jid] <= older_than]
        return ids[:limit]

    async def remove(self, job_id: str) -> bool:
        self._entered.pop(job_id, None)
        return self._records.pop(job_id, None) is not None


class RedisJobStore:
    def __init__(self, client: aioredis.Redis, queue_name: str = QUEUE_NAME):
        self.client = client
        self.queue_name = queue_name

    def _job_key(self, job_id: str) -> str:
        return f"jobs:{self.queue_name}:{job_id}"

    def _state_key(self, state: str) -> str:
        return f"jobs:{self.queue_name}:state:{state}"

    @staticmethod
    def _encode(fields: Dict[str, Any]) -> Dict[str, str]:
        out = {}
        for k, v in fields.items():
            if v is None:
                continue
            if isinstance(v, datetime):
                out[k] = v.isoformat()
            elif isinstance(v, (dict, list)):
                out[k] = json.dumps(v, ensure_ascii=False)
            else:
                out[k] = str(v)
        return out

    async def create(self, job_id: str, payload: Dict[str, Any], max_attempts: int = 3) -> JobRecord:
        rec = JobRecord(id=job_id, payload=payload, max_attempts=max_attempts, created_at=_now())
        await self.client.hset(self._job_key(job_id), mapping=self._encode(rec.model_dump()))
        await self.client.zadd(self._state_key("waiting"), {job_id: time.time()})
        return rec

    async def get(self, job_id: str) -> Optional[JobRecord]:
        raw = await self.client.hgetall(self._job_key(job_id))
        if not raw:
            return None
        data: Dict[str, Any] = dict(raw)
        data["payload"] = json.loads(data.get("payload") or "{}")
        return JobRecord.model_validate(data)

    async def set_state(self, job_id: str, state: str, **fields: Any) -> None:
        if state not in QUEUE_STATES:
            raise ValueError(f"Unknown queue state: {state}")
        for other in QUEUE_STATES:
            if other != state:
                await self.client.zrem(self._state_key(other), job_id)
        await self.client.zadd(self._state_key(state), {job_id: time.time()})
        await self.client.hset(self._job_key(job_id), mapping=self._encode({"state": state, **fields}))

    async def update_progress(self, job_id: str, progress: int) -> None:
        await self.client.hset(self._job_key(job_id), "progress", str(progress))

    async def record_attempt(self, job_id: str) -> int:
        return int(await self.client.hincrby(self._job_key(job_id), "attempts", 1))

    async def count(self, state: str) -> int:
        return int(await self.client.zcard(self._state_key(state)))

    async def list_ids(self, state: str, older_than: Optional[float] = None, limit: int = 100) -> List[str]:
        upper = "+inf" if older_than is None else older_than
        return list(await self.client.zrangebyscore(self._state_key(state), "-inf", upper, start=0, num=limit))

    async def remove(self, job_id: str) -> bool:
        for state in QUEUE_STATES:
            await self.client.zrem(self._state_key(state), job_id)
        return bool(await self.client.delete(self._job_key(job_id)))
