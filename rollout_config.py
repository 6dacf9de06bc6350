from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Optional

from metrics_prom import PrometheusRolloutMonitor
from rollout import RemoteRollout, RolloutSource, StaticRollout
from rollout_store import DynamoDBRecordStore, RedisRecordStore, make_dynamodb_client

Backend = Literal["redis", "dynamodb", "static"]
BACKENDS = ("redis", "dynamodb", "static")

@dataclass(frozen=True)
class RolloutSettings:
    backend: Backend = "redis"
    table: str = "rollouts"
    application: str = "llm-agent"
    poll_delay_sec: float = 5.0
    unhealthy_sec: float = 60.0
    fetch_timeout_sec: Optional[float] = None
    static_value: float = 0.0
    redis_url: str = "redis://localhost:6379/0"
    aws_region: str = "us-east-1"

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(f"unknown ROLLOUT_BACKEND: {self.backend!r} (expected one of {BACKENDS})")
        if self.poll_delay_sec <= 0:
            raise ValueError("ROLLOUT_POLL_DELAY_SEC must be > 0")
        if self.unhealthy_sec < 0:
            raise ValueError("ROLLOUT_UNHEALTHY_SEC must be >= 0")

    @classmethod
    def from_env(cls) -> "RolloutSettings":
        # import 시점이 아니라 호출 시점에 읽는다 (.env 로드 이후)
        timeout = os.getenv("ROLLOUT_FETCH_TIMEOUT_SEC")
        return cls(
            backend=os.getenv("ROLLOUT_BACKEND", "redis").strip().lower(),  # type: ignore
            table=os.getenv("ROLLOUT_TABLE", "rollouts"),
            application=os.getenv("ROLLOUT_APPLICATION", "llm-agent"),
            poll_delay_sec=float(os.getenv("ROLLOUT_POLL_DELAY_SEC", "5")),
            unhealthy_sec=float(os.getenv("ROLLOUT_UNHEALTHY_SEC", "60")),
            fetch_timeout_sec=float(timeout) if timeout else None,
            static_value=float(os.getenv("ROLLOUT_STATIC_VALUE", "0")),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
        )

def make_store(settings: RolloutSettings):
    if settings.backend == "redis":
        return RedisRecordStore.from_url(settings.redis_url)
    if settings.backend == "dynamodb":
        return DynamoDBRecordStore(make_dynamodb_client(settings.aws_region))
    return None

async def build_rollout(settings: RolloutSettings, store=None) -> RolloutSource:
    """
    설정대로 rollout source를 만든다. remote면 즉시 폴링이 시작된다.
    store를 넘기면 backend 설정 대신 그걸 쓴다 (테스트용).
    """
    if settings.backend == "static":
        return StaticRollout(settings.static_value)

    if store is None:
        store = make_store(settings)
    return RemoteRollout(
        PrometheusRolloutMonitor(settings.application),
        store,
        settings.table,
        settings.application,
        settings.poll_delay_sec,
        settings.unhealthy_sec,
        fetch_timeout=settings.fetch_timeout_sec,
    )
