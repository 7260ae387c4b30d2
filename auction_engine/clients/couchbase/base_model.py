from datetime import datetime, timezone
from typing import Generic, List, Optional, Type

from couchbase.exceptions import CASMismatchException, DocumentNotFoundException
from couchbase.options import ReplaceOptions

from auction_engine.models.entities.base import BaseEntityData, T
from auction_engine.models.store.base import StaleWriteError

from .keyspace import Keyspace, get_keyspace


class CouchbaseRepository(Generic[T]):
    """CAS-aware document access for one entity type."""

    def __init__(self, entity_cls: Type[T], scope_name: str = "_default"):
        self.entity_cls = entity_cls
        self.scope_name = scope_name
        self._keyspace: Optional[Keyspace] = None

    @property
    def collection_name(self) -> str:
        return self.entity_cls.collection_name()

    def get_keyspace(self) -> Keyspace:
        if self._keyspace is None:
            self._keyspace = get_keyspace(self.collection_name, scope_name=self.scope_name)
        return self._keyspace

    @staticmethod
    def to_document(data: BaseEntityData) -> dict:
        return data.model_dump(mode='json')

    def from_row(self, row: dict) -> Optional[T]:
        """Build an entity from a ``SELECT META().id, * FROM ...`` row."""
        data = row.get(self.collection_name)
        if not data:
            return None
        return self.entity_cls(id=row['id'], data=data)

    async def get(self, id: str) -> Optional[T]:
        try:
            collection = await self.get_keyspace().get_collection()
            result = await collection.get(id)
            return self.entity_cls(id=id, data=result.content_as[dict], cas=result.cas)
        except DocumentNotFoundException:
            return None

    async def create(self, item: T, user_id: Optional[str] = None) -> T:
        now = datetime.now(timezone.utc)
        if item.data.created_at is None:
            item.data.created_at = now
        item.data.updated_at = now
        if user_id:
            item.data.created_by_user_id = user_id

        result = await self.get_keyspace().insert(item.id, self.to_document(item.data))
        item.cas = result.cas
        return item

    async def create_or_update(self, item: T) -> T:
        """Idempotently write a document under a deterministic key."""
        now = datetime.now(timezone.utc)
        if item.data.created_at is None:
            item.data.created_at = now
        item.data.updated_at = now

        result = await self.get_keyspace().upsert(item.id, self.to_document(item.data))
        item.cas = result.cas
        return item

    async def update(self, item: T) -> T:
        """Replace a document, guarded by the CAS value it was read at."""
        collection = await self.get_keyspace().get_collection()
        item.data.updated_at = datetime.now(timezone.utc)
        doc = self.to_document(item.data)
        try:
            if item.cas:
                result = await collection.replace(item.id, doc, ReplaceOptions(cas=item.cas))
            else:
                result = await collection.replace(item.id, doc)
        except (CASMismatchException, DocumentNotFoundException) as e:
            raise StaleWriteError(f"{self.collection_name}/{item.id} changed since it was read") from e
        item.cas = result.cas
        return item

    async def select(self, where: str, order_by: Optional[str] = None, **params) -> List[T]:
        keyspace = self.get_keyspace()
        query = f"SELECT META().id, * FROM {keyspace} WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        rows = await keyspace.query(query, **params)
        return [item for item in (self.from_row(row) for row in rows) if item is not None]
