"""
Keyed record storage for sessions, scene video jobs and products.

`RecordStore` is the interface the pipeline talks to. `FailoverRecordStore`
wraps the durable DynamoDB backend and, once a partition key hits a
store-unavailability error, serves that key from an in-process map for the
rest of the process lifetime.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog
from pynamodb.exceptions import DoesNotExist, PynamoDBException

from pipeline.error_handler import StoreUnavailable
from ugc_models import UGCRecordItem, owner_gsi_pk, session_pk

logger = structlog.get_logger()

Record = Dict[str, Any]


class RecordStore(ABC):
    """Async keyed-record interface. Records are plain JSON-compatible dicts."""

    @abstractmethod
    async def get(self, pk: str, sk: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def put(self, pk: str, sk: str, record: Record) -> None:
        ...

    @abstractmethod
    async def delete(self, pk: str, sk: str) -> None:
        ...

    @abstractmethod
    async def query(self, pk: str, sk_prefix: str = "") -> List[Record]:
        """All records under `pk` whose sort key starts with `sk_prefix`, ordered by sort key."""

    @abstractmethod
    async def query_owner(self, owner_id: str) -> List[Record]:
        """Session records owned by `owner_id`, newest first."""


class DynamoRecordStore(RecordStore):
    """
    DynamoDB-backed store using the single-table UGCRecordItem model.

    PynamoDB is synchronous, so every call runs in the default executor.
    Any PynamoDB failure other than a missing item is raised as StoreUnavailable.
    """

    def __init__(self, model=UGCRecordItem):
        self.model = model

    async def _run(self, operation: str, fn: Callable, **context):
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except PynamoDBException as e:
            logger.error("dynamodb_operation_failed", operation=operation, error=str(e), **context)
            raise StoreUnavailable(f"DynamoDB {operation} failed: {e}", context) from e

    async def get(self, pk: str, sk: str) -> Optional[Record]:
        def _get():
            try:
                return self.model.get(pk, sk).to_record()
            except DoesNotExist:
                return None

        return await self._run("get", _get, pk=pk, sk=sk)

    async def put(self, pk: str, sk: str, record: Record) -> None:
        item = self.model.from_record(pk, sk, record)
        await self._run("put", item.save, pk=pk, sk=sk)

    async def delete(self, pk: str, sk: str) -> None:
        def _delete():
            try:
                self.model.get(pk, sk).delete()
            except DoesNotExist:
                pass

        await self._run("delete", _delete, pk=pk, sk=sk)

    async def query(self, pk: str, sk_prefix: str = "") -> List[Record]:
        def _query():
            if sk_prefix:
                items = self.model.query(pk, self.model.SK.startswith(sk_prefix))
            else:
                items = self.model.query(pk)
            return [item.to_record() for item in items]

        return await self._run("query", _query, pk=pk, sk_prefix=sk_prefix)

    async def query_owner(self, owner_id: str) -> List[Record]:
        def _query():
            items = self.model.owner_index.query(owner_gsi_pk(owner_id), scan_index_forward=False)
            return [item.to_record() for item in items]

        return await self._run("query_owner", _query, owner_id=owner_id)


class InMemoryRecordStore(RecordStore):
    """Process-lifetime keyed map. Records are deep-copied in and out."""

    def __init__(self):
        self._records: Dict[Tuple[str, str], Record] = {}

    async def get(self, pk: str, sk: str) -> Optional[Record]:
        record = self._records.get((pk, sk))
        return copy.deepcopy(record) if record is not None else None

    async def put(self, pk: str, sk: str, record: Record) -> None:
        self._records[(pk, sk)] = copy.deepcopy(record)

    async def delete(self, pk: str, sk: str) -> None:
        self._records.pop((pk, sk), None)

    async def query(self, pk: str, sk_prefix: str = "") -> List[Record]:
        keys = sorted(
            key for key in self._records
            if key[0] == pk and key[1].startswith(sk_prefix)
        )
        return [copy.deepcopy(self._records[key]) for key in keys]

    async def query_owner(self, owner_id: str) -> List[Record]:
        sessions = [
            copy.deepcopy(record) for (pk, sk), record in self._records.items()
            if pk.startswith("SESSION#") and sk == "METADATA" and record.get("ownerId") == owner_id
        ]
        sessions.sort(key=lambda record: str(record.get("createdAt", "")), reverse=True)
        return sessions

    def __len__(self) -> int:
        return len(self._records)


class FailoverRecordStore(RecordStore):
    """
    Routes each partition key to the durable store until it raises
    StoreUnavailable, then pins that key to the in-memory fallback.

    Writes always carry full records, so a pinned key never needs to merge
    state from the durable store.
    """

    def __init__(self, primary: RecordStore, fallback: Optional[RecordStore] = None):
        self.primary = primary
        self.fallback = fallback or InMemoryRecordStore()
        self._pinned: Set[str] = set()

    def is_pinned(self, pk: str) -> bool:
        return pk in self._pinned

    def _pin(self, pk: str, operation: str, error: StoreUnavailable) -> None:
        if pk not in self._pinned:
            logger.warning(
                "record_store_fallback_activated",
                pk=pk,
                operation=operation,
                error=error.message
            )
        self._pinned.add(pk)

    async def _call(self, pk: str, operation: str, *args):
        if pk in self._pinned:
            return await getattr(self.fallback, operation)(pk, *args)
        try:
            return await getattr(self.primary, operation)(pk, *args)
        except StoreUnavailable as e:
            self._pin(pk, operation, e)
            return await getattr(self.fallback, operation)(pk, *args)

    async def get(self, pk: str, sk: str) -> Optional[Record]:
        return await self._call(pk, "get", sk)

    async def put(self, pk: str, sk: str, record: Record) -> None:
        await self._call(pk, "put", sk, record)

    async def delete(self, pk: str, sk: str) -> None:
        await self._call(pk, "delete", sk)

    async def query(self, pk: str, sk_prefix: str = "") -> List[Record]:
        return await self._call(pk, "query", sk_prefix)

    async def query_owner(self, owner_id: str) -> List[Record]:
        try:
            durable = await self.primary.query_owner(owner_id)
        except StoreUnavailable as e:
            logger.warning("record_store_owner_query_fallback", owner_id=owner_id, error=e.message)
            durable = []

        # Pinned sessions live only in the fallback and win over stale durable copies
        pinned = [
            record for record in await self.fallback.query_owner(owner_id)
            if session_pk(record.get("id", "")) in self._pinned
        ]
        pinned_ids = {record.get("id") for record in pinned}
        merged = pinned + [record for record in durable if record.get("id") not in pinned_ids]
        merged.sort(key=lambda record: str(record.get("createdAt", "")), reverse=True)
        return merged
