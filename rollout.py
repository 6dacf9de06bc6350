from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Callable, Mapping, Optional, Protocol, runtime_checkable

from obs_log import error_fields, log
from otel import span
from resilience import with_timeout
from rollout_store import AttributeValue, RecordStore, describe_store
from utils_obs import Timer, to_seconds

# 테이블 스키마: hash key "application"(S), range key "version"(S), 값 "rollout"(N)
HASH_FIELD = "application"
RANGE_FIELD = "version"
RANGE_KEY = "canary"
ROLLOUT_FIELD = "rollout"


# -- errors --

class RolloutError(Exception):
    pass

class InvalidHandle(RolloutError, ValueError):
    """store 핸들이 없으면 생성 자체가 실패한다."""

class RolloutFetchError(RolloutError):
    """
    fetch 경로의 실패. 루프 안에서 전부 복구되고 호출자에게 전파되지 않는다.
    reason은 metric label로 쓰는 고정 문자열.
    """
    reason = "fetch_failed"

class StoreUnavailable(RolloutFetchError):
    reason = "store_unavailable"

class MissingField(RolloutFetchError):
    reason = "missing_field"

class WrongType(RolloutFetchError):
    reason = "wrong_type"

class UnparseableNumber(RolloutFetchError):
    reason = "unparseable"

class OutOfRange(RolloutFetchError):
    reason = "out_of_range"


# -- interfaces --

@runtime_checkable
class RolloutSource(Protocol):
    def get(self) -> float:
        """
        현재 rollout 값. I/O 없이 즉시 반환한다.
        [0.0, 1.0] 밖의 값일 수 있으므로 호출자가 검사해야 한다.
        """
        ...

class RolloutMonitor(Protocol):
    def record_rollout_update(self, error: Optional[Exception]) -> None:
        ...


@dataclass(frozen=True)
class RolloutSnapshot:
    value: float
    ok: bool = False            # 마지막 fetch 성공 여부
    degraded: bool = False      # unhealthy 기간 초과로 0.0 강제
    updated_at: float = 0.0     # publish 시각 (epoch sec)


class StaticRollout:
    """항상 같은 값을 주는 rollout. 검증하지 않는다."""

    def __init__(self, value: float):
        self.value = float(value)

    def get(self) -> float:
        return self.value

    def snapshot(self) -> RolloutSnapshot:
        return RolloutSnapshot(value=self.value, ok=True)


def parse_rollout(item: Mapping[str, AttributeValue]) -> float:
    """
    lookup 결과에서 rollout 값을 꺼내 검증한다.
    실패 사유별로 RolloutFetchError 하위 예외를 던진다.
    """
    raw = item.get(ROLLOUT_FIELD) if isinstance(item, Mapping) else None
    if raw is None:
        raise MissingField(f'could not find "{ROLLOUT_FIELD}" key in response')

    number = raw.get("N") if isinstance(raw, Mapping) else None
    if number is None:
        raise WrongType("rollout value is not stored as a number type")

    try:
        pct = float(number)
    except (TypeError, ValueError, OverflowError) as e:
        raise UnparseableNumber(f"could not parse rollout value as a number: {e}") from e

    # NaN도 여기서 걸러진다
    if not (0.0 <= pct <= 1.0):
        raise OutOfRange(f"rollout value {number!r} is out of [0.0,1.0] range")
    return pct


class RemoteRollout:
    """
    원격 레코드 저장소에서 rollout 값을 계속 읽어오는 rollout.

    생성 시점에 백그라운드 task를 띄우고, 첫 fetch를 기다리지 않는다 (초기값 0.0).
    fetch 실패가 unhealthy 기간보다 길게 이어지면 값을 0.0으로 내린다
    (canary를 되돌릴 수 없는 상황에서 피해를 줄이기 위함).
    반드시 실행 중인 event loop 안에서 생성해야 한다.
    """

    def __init__(
        self,
        monitor: Optional[RolloutMonitor],
        store: Optional[RecordStore],
        table: str,
        application: str,
        delay,
        unhealthy,
        *,
        fetch_timeout=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if store is None:
            raise InvalidHandle("record store argument is None")

        self.monitor = monitor
        self.store = store
        self.table = table
        self.application = application
        self.delay = to_seconds(delay)
        self.unhealthy = to_seconds(unhealthy)
        self.fetch_timeout = to_seconds(fetch_timeout) if fetch_timeout is not None else None
        self._clock = clock

        self._key = {HASH_FIELD: application, RANGE_FIELD: RANGE_KEY}
        self._snapshot = RolloutSnapshot(value=0.0)
        self._last_healthy = clock()

        # 실행 중인 loop가 없으면 RuntimeError
        loop = asyncio.get_running_loop()
        self._task: Optional[asyncio.Task] = loop.create_task(
            self._run(), name=f"rollout-refresh:{application}"
        )

    def get(self) -> float:
        return self._snapshot.value

    def snapshot(self) -> RolloutSnapshot:
        return self._snapshot

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def fetch(self) -> float:
        try:
            item = await with_timeout(
                self.store.get_item(self.table, self._key, [ROLLOUT_FIELD], consistent=True),
                self.fetch_timeout,
            )
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"rollout fetch timed out after {self.fetch_timeout}s") from e
        except Exception as e:
            raise StoreUnavailable(f"could not fetch rollout value: {e}") from e
        return parse_rollout(item)

    def _report(self, err: Optional[Exception]) -> None:
        if self.monitor is None:
            return
        try:
            self.monitor.record_rollout_update(err)
        except Exception as e:
            # monitor 장애가 루프를 멈추면 안 됨
            log("rollout_monitor_failed", application=self.application, **error_fields(e))

    def _publish(self, snap: RolloutSnapshot) -> None:
        # 불변 객체 교체 한 번으로 publish (reader는 이전/이후 값만 본다)
        self._snapshot = snap

    async def refresh_once(self) -> RolloutSnapshot:
        """
        fetch → 검증 → (성공 시) publish, (실패 시) unhealthy 판정.
        실패 기간이 unhealthy 이하이면 기존 값을 그대로 둔다.
        """
        timer = Timer.start()
        attrs = {"rollout.application": self.application, "rollout.table": self.table}
        err: Optional[RolloutFetchError] = None

        with span("rollout.fetch", attrs) as sp:
            try:
                pct = await self.fetch()
            except RolloutFetchError as e:
                err = e
                sp.set_attribute("rollout.error_reason", e.reason)

        self._report(err)

        if err is None:
            self._last_healthy = self._clock()
            self._publish(RolloutSnapshot(value=pct, ok=True, updated_at=time.time()))
            return self._snapshot

        return self._fail(err, timer.ms())

    def _fail(self, err: Exception, latency_ms: Optional[int] = None) -> RolloutSnapshot:
        log(
            "rollout_fetch_failed",
            application=self.application,
            reason=getattr(err, "reason", "unexpected"),
            latency_ms=latency_ms,
            **error_fields(err),
        )

        unhealthy_for = self._clock() - self._last_healthy
        if unhealthy_for > self.unhealthy:
            log("rollout_unhealthy", application=self.application, unhealthy_for_sec=round(unhealthy_for, 3), value=0.0)
            # health timer는 성공 시에만 리셋
            self._publish(RolloutSnapshot(value=0.0, ok=False, degraded=True, updated_at=time.time()))
        else:
            # 값은 유지, 상태만 갱신
            self._publish(replace(self._snapshot, ok=False))
        return self._snapshot

    async def _run(self) -> None:
        log(
            "rollout_started",
            application=self.application,
            table=self.table,
            store=describe_store(self.store),
            delay_sec=self.delay,
            unhealthy_sec=self.unhealthy,
        )
        try:
            while True:
                try:
                    await self.refresh_once()
                except Exception as e:
                    # 예상 못 한 예외도 실패한 iteration으로 처리 (루프는 계속)
                    self._report(e)
                    self._fail(e)
                # fetch 시간은 빼지 않는다 (주기 ≈ fetch latency + delay)
                await asyncio.sleep(self.delay)
        finally:
            log("rollout_stopped", application=self.application, value=self._snapshot.value)

    async def stop(self) -> None:
        """백그라운드 task를 취소하고 종료될 때까지 기다린다. 여러 번 불러도 안전."""
        task = self._task
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # stop()을 부른 쪽이 취소된 경우는 다시 던진다
            if not task.cancelled():
                raise
        except Exception as e:
            # task가 예외로 죽었어도 종료는 계속 진행
            log("rollout_stopped", application=self.application, value=self._snapshot.value, **error_fields(e))

    async def __aenter__(self) -> "RemoteRollout":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
