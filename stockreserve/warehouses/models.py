from typing import Optional
from pydantic import BaseModel, Field


class WarehouseCreateIn(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=128)
    is_default: bool = False
    is_active: bool = True


class WarehouseOut(BaseModel):
    id: int
    code: str
    name: str
    is_default: bool
    is_active: bool
