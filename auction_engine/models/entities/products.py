from typing import Literal

from .base import BaseEntity, BaseEntityData


class ProductData(BaseEntityData):
    seller_id: str
    title: str
    status: Literal["draft", "active", "sold", "inactive"] = "draft"


class Product(BaseEntity[ProductData]):
    _collection_name = "products"
