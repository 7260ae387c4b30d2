from dataclasses import dataclass
from typing import Optional

from couchbase.options import QueryOptions
from couchbase.result import MutationResult

from .config import get_cluster, get_settings


@dataclass
class Keyspace:
    bucket_name: str
    scope_name: str
    collection_name: str

    def __str__(self) -> str:
        return f"`{self.bucket_name}`.`{self.scope_name}`.`{self.collection_name}`"

    async def query(self, query: str, **params) -> list:
        cluster = await get_cluster()
        options = QueryOptions(named_parameters=params) if params else QueryOptions()
        result = cluster.query(query, options)
        return [row async for row in result]

    async def get_collection(self):
        cluster = await get_cluster()
        bucket = cluster.bucket(self.bucket_name)
        return bucket.scope(self.scope_name).collection(self.collection_name)

    async def insert(self, key: str, value: dict, **kwargs) -> MutationResult:
        collection = await self.get_collection()
        return await collection.insert(key, value, **kwargs)

    async def upsert(self, key: str, value: dict, **kwargs) -> MutationResult:
        """Insert or update a document (idempotent write)."""
        collection = await self.get_collection()
        return await collection.upsert(key, value, **kwargs)


def get_keyspace(
    collection_name: str,
    scope_name: str = "_default",
    bucket_name: Optional[str] = None,
) -> Keyspace:
    """Keyspace for a collection in the configured bucket unless one is given."""
    return Keyspace(bucket_name or get_settings().bucket_name, scope_name, collection_name)
