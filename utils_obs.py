import time
from dataclasses import dataclass

@dataclass
class Timer:
    t0: float

    @classmethod
    def start(cls):
        return cls(time.perf_counter())

    def ms(self) -> int:
        return int((time.perf_counter() - self.t0) * 1000)

def to_seconds(value) -> float:
    # timedelta 또는 숫자(초)
    if hasattr(value, "total_seconds"):
        return float(value.total_seconds())
    return float(value)
