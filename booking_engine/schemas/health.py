from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"] = "ok"
    service: str
    slot_store: str
    slot_store_status: Literal["ok", "unavailable"] = "ok"
    timestamp: datetime
