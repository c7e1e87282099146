from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
    requestId: Optional[str] = None


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str = "1.0.0"


class CardMove(BaseModel):
    columnId: str = Field(min_length=1)
    rank: float = Field(ge=0, allow_inf_nan=False)
    rowVersion: Optional[str] = None


class CardOut(BaseModel):
    id: str
    columnId: str
    name: str
    rank: float
    rowVersion: str
    createdAt: datetime


class ColumnRebalancedOut(BaseModel):
    columnId: str
    timestamp: datetime
