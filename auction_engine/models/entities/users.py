from typing import Optional

from .base import BaseEntity, BaseEntityData


class UserData(BaseEntityData):
    email: str
    company_name: Optional[str] = None


class User(BaseEntity[UserData]):
    _collection_name = "users"
