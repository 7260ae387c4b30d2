from datetime import datetime
from typing import ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel


class BaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None


DataT = TypeVar("DataT", bound=BaseEntityData)
T = TypeVar("T", bound="BaseEntity")


class BaseEntity(BaseModel, Generic[DataT]):
    """A stored document: key, payload and the CAS value it was read at."""

    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @classmethod
    def collection_name(cls) -> str:
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return cls._collection_name
