"""
Size-bounded transaction ledger.

The whole collection is stored as one document under a fixed identifier,
newest first. Every append is a read-modify-write of that document, so
writers are serialized with an asyncio lock.

Stores:
- JsonFileLedgerStore: a JSON file replaced atomically on write
- RedisLedgerStore: a single Redis string key
"""
import asyncio
import json
import os
import tempfile
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError
import structlog
from pydantic import ValidationError as PydanticValidationError

from stk_gateway.core.exceptions import PersistenceError
from stk_gateway.core.models import (
    DailyStats,
    TransactionDraft,
    TransactionRecord,
    TransactionStatus,
)
from stk_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 40


class LedgerStore(Protocol):
    """Durable document holding the serialized ledger."""

    async def load(self) -> Optional[List[Any]]:
        ...

    async def save(self, documents: List[Any]) -> None:
        ...

    async def delete(self) -> None:
        ...


class JsonFileLedgerStore:
    """Ledger document kept in a JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def load(self) -> Optional[List[Any]]:
        return await asyncio.to_thread(self._load)

    async def save(self, documents: List[Any]) -> None:
        await asyncio.to_thread(self._save, documents)

    async def delete(self) -> None:
        await asyncio.to_thread(self._delete)

    def _load(self) -> Optional[List[Any]]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read ledger: {e}")
        try:
            documents = json.loads(text)
        except ValueError as e:
            raise PersistenceError(f"Ledger file is corrupt: {e}")
        if not isinstance(documents, list):
            raise PersistenceError("Ledger file is corrupt: expected a list")
        return documents

    def _save(self, documents: List[Any]) -> None:
        # write a sibling temp file, then rename over the target
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
        except OSError as e:
            raise PersistenceError(f"Failed to write ledger: {e}")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(documents, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise PersistenceError(f"Failed to write ledger: {e}")

    def _delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(f"Failed to delete ledger: {e}")


class RedisLedgerStore:
    """Ledger document kept in a single Redis key."""

    def __init__(self, redis_client: aioredis.Redis, key: str = "transactions"):
        self.redis_client = redis_client
        self.key = key

    async def load(self) -> Optional[List[Any]]:
        try:
            raw = await self.redis_client.get(self.key)
        except RedisError as e:
            raise PersistenceError(f"Failed to read ledger: {e}")
        if raw is None:
            return None
        try:
            documents = json.loads(raw)
        except ValueError as e:
            raise PersistenceError(f"Ledger key is corrupt: {e}")
        if not isinstance(documents, list):
            raise PersistenceError("Ledger key is corrupt: expected a list")
        return documents

    async def save(self, documents: List[Any]) -> None:
        try:
            await self.redis_client.set(self.key, json.dumps(documents))
        except RedisError as e:
            raise PersistenceError(f"Failed to write ledger: {e}")

    async def delete(self) -> None:
        try:
            await self.redis_client.delete(self.key)
        except RedisError as e:
            raise PersistenceError(f"Failed to delete ledger: {e}")

    async def close(self) -> None:
        """Close Redis connection."""
        await self.redis_client.aclose()


def generate_record_id() -> str:
    """Millisecond time component plus a random component."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def local_midnight(reference: datetime) -> datetime:
    """Start of the reference day in the local timezone."""
    local = reference.astimezone()
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


class TransactionLedger:
    """
    Newest-first ledger capped at a fixed number of records.

    Invariant: len(list()) <= capacity after every successful append; the
    oldest records are evicted first.
    """

    def __init__(
        self,
        store: LedgerStore,
        capacity: int = DEFAULT_CAPACITY,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Callable[[], str] = generate_record_id,
    ):
        """
        Initialize ledger.

        Args:
            store: Durable document store
            capacity: Maximum number of records kept
            clock: Timezone-aware clock (injectable for tests)
            id_factory: Record id generator
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.store = store
        self.capacity = capacity
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._id_factory = id_factory
        self._write_lock = asyncio.Lock()

    async def list(self) -> List[TransactionRecord]:
        """Stored records, newest first. Empty when nothing is stored yet."""
        documents = await self.store.load()
        if not documents:
            return []
        try:
            return [TransactionRecord.model_validate(doc) for doc in documents]
        except PydanticValidationError as e:
            raise PersistenceError(f"Ledger contains an invalid record: {e.error_count()} errors")

    async def append(self, draft: TransactionDraft) -> TransactionRecord:
        """Stamp, insert at the head, truncate to capacity and persist."""
        async with self._write_lock:
            records = await self.list()
            return await self._insert(records, draft)

    async def append_once(self, draft: TransactionDraft) -> Tuple[TransactionRecord, bool]:
        """
        Append unless a record with the same checkout request id is retained.

        Returns:
            Tuple[TransactionRecord, bool]: (record, created)
        """
        async with self._write_lock:
            records = await self.list()
            if draft.checkout_request_id:
                for existing in records:
                    if existing.checkout_request_id == draft.checkout_request_id:
                        return existing, False
            return await self._insert(records, draft), True

    async def _insert(
        self, records: List[TransactionRecord], draft: TransactionDraft
    ) -> TransactionRecord:
        record = TransactionRecord(
            **draft.model_dump(),
            id=self._id_factory(),
            timestamp=self._clock(),
        )
        updated = [record, *records][: self.capacity]
        await self.store.save(
            [r.model_dump(mode="json", by_alias=True) for r in updated]
        )
        metrics.set_ledger_size(len(updated))
        logger.info(
            "ledger_record_appended",
            record_id=record.id,
            status=record.status.value,
            evicted=len(records) + 1 - len(updated),
        )
        return record

    async def daily_stats(self, reference_time: Optional[datetime] = None) -> DailyStats:
        """
        Count records since local midnight; revenue sums Completed amounts only.
        """
        midnight = local_midnight(reference_time or self._clock())
        today = [r for r in await self.list() if r.timestamp >= midnight]
        revenue = sum(r.amount for r in today if r.status == TransactionStatus.COMPLETED)
        return DailyStats(count=len(today), revenue=revenue)

    async def reset(self) -> None:
        """Clear stored state. A missing document is not an error."""
        async with self._write_lock:
            await self.store.delete()
        metrics.set_ledger_size(0)
        logger.info("ledger_reset")
