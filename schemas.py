from pydantic import BaseModel, Field
from typing import Literal

class HealthResponse(BaseModel):
    ok: bool

class RolloutResponse(BaseModel):
    source: Literal["static", "remote"]
    application: str
    value: float    # 범위 밖일 수 있음 (static 값은 검증하지 않음)

    # 상태 메타
    ok: bool
    degraded: bool = False
    updated_at: float = Field(0.0, ge=0)    # 첫 publish 전에는 0
