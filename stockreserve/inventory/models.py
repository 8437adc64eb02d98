from typing import Optional
from pydantic import BaseModel, Field, field_validator


class StockAdjustIn(BaseModel):
    product_id: int
    warehouse_id: Optional[int] = None   # default warehouse when omitted
    delta: int
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason is required")
        return v
