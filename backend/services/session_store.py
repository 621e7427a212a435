"""
Typed repositories over the RecordStore for sessions, scene video jobs and
catalog products.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Union

import structlog

from pipeline.error_handler import NotFoundError
from services.record_store import RecordStore
from ugc_models import METADATA_SK, job_sk, product_pk, session_pk
from ugc_schemas import Product, SceneVideoJob, UGCSession, utc_now

logger = structlog.get_logger()

SessionMutator = Callable[[UGCSession], Union[None, Awaitable[None]]]


class SessionRepository:
    """
    Loads and saves UGCSession records.

    Read-modify-write goes through `update()`, which serializes writers of the
    same session so concurrent job tasks cannot lose each other's changes.
    """

    def __init__(self, store: RecordStore):
        self.store = store
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def get(self, session_id: str) -> Optional[UGCSession]:
        record = await self.store.get(session_pk(session_id), METADATA_SK)
        return UGCSession.model_validate(record) if record else None

    async def get_owned(self, owner_id: str, session_id: str) -> UGCSession:
        """Load a session, raising NotFoundError when missing or owned by someone else."""
        session = await self.get(session_id)
        if session is None or session.ownerId != owner_id:
            raise NotFoundError("session", session_id)
        return session

    async def save(self, session: UGCSession) -> UGCSession:
        session.updatedAt = utc_now()
        await self.store.put(session_pk(session.id), METADATA_SK, session.model_dump(mode="json"))
        return session

    async def update(self, session_id: str, mutate: SessionMutator) -> UGCSession:
        """
        Apply `mutate` to the latest stored copy and persist it.

        The mutator works on a private copy; nothing is written if it raises.
        """
        async with self._lock(session_id):
            session = await self.get(session_id)
            if session is None:
                raise NotFoundError("session", session_id)
            result = mutate(session)
            if asyncio.iscoroutine(result):
                await result
            return await self.save(session)

    async def list_for_owner(self, owner_id: str) -> List[UGCSession]:
        records = await self.store.query_owner(owner_id)
        return [UGCSession.model_validate(record) for record in records]

    async def delete(self, session_id: str) -> None:
        async with self._lock(session_id):
            for job in await self.store.query(session_pk(session_id), "JOB#"):
                await self.store.delete(session_pk(session_id), job_sk(job["sceneIndex"]))
            await self.store.delete(session_pk(session_id), METADATA_SK)
        self._locks.pop(session_id, None)


class SceneVideoJobRepository:
    """One row per (session, scene index); rows live under the session's partition key."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def get(self, session_id: str, scene_index: int) -> Optional[SceneVideoJob]:
        record = await self.store.get(session_pk(session_id), job_sk(scene_index))
        return SceneVideoJob.model_validate(record) if record else None

    async def save(self, job: SceneVideoJob) -> SceneVideoJob:
        job.updatedAt = utc_now()
        await self.store.put(session_pk(job.sessionId), job_sk(job.sceneIndex), job.model_dump(mode="json"))
        return job

    async def list_for_session(self, session_id: str) -> List[SceneVideoJob]:
        records = await self.store.query(session_pk(session_id), "JOB#")
        jobs = [SceneVideoJob.model_validate(record) for record in records]
        return sorted(jobs, key=lambda job: job.sceneIndex)


class ProductCatalog:
    """
    Read access to catalog products.

    Products are synced into the record store by the catalog service;
    `put_product` exists for that sync and for seeding local environments.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def get_product(self, product_id: str) -> Product:
        record = await self.store.get(product_pk(product_id), METADATA_SK)
        if not record:
            raise NotFoundError("product", product_id)
        return Product.model_validate(record)

    async def put_product(self, product: Product) -> None:
        await self.store.put(product_pk(product.id), METADATA_SK, product.model_dump(mode="json"))
