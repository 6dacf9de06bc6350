import os
from typing import Optional

from prometheus_client import Counter, Gauge

APP_NAME = os.getenv("APP_NAME", "canary_rollout")

ROLLOUT_UPDATES = Counter(
    f"{APP_NAME}_rollout_updates_total",
    "Rollout refresh attempts",
    ["application", "status", "reason"],   # status: ok/error
)

ROLLOUT_LAST_SUCCESS = Gauge(
    f"{APP_NAME}_rollout_last_success_timestamp_seconds",
    "Unix time of the last successful rollout fetch",
    ["application"],
)

class PrometheusRolloutMonitor:
    """
    RemoteRollout의 monitor 구현. 루프 iteration마다 한 번 호출된다.
    """
    def __init__(self, application: str):
        self.application = application

    def record_rollout_update(self, error: Optional[Exception]) -> None:
        if error is None:
            ROLLOUT_UPDATES.labels(self.application, "ok", "").inc()
            ROLLOUT_LAST_SUCCESS.labels(self.application).set_to_current_time()
            return

        # RolloutFetchError가 아니면 예외 클래스 이름으로
        reason = getattr(error, "reason", None) or type(error).__name__
        ROLLOUT_UPDATES.labels(self.application, "error", reason).inc()
