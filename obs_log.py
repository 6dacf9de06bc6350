import json
import os
import time

LOG_JSON = os.getenv("LOG_JSON", "1") == "1"

def now_ms() -> int:
    return int(time.time() * 1000)

def log(event: str, **fields):
    payload = {"ts_ms": now_ms(), "event": event, **fields}
    if LOG_JSON:
        # 예외 객체 등 직렬화 불가 값은 str로
        print(json.dumps(payload, ensure_ascii=False, default=str))
    else:
        print(payload)

def error_fields(err: BaseException | None) -> dict:
    """
    로그용 에러 필드를 통일:
        {"error_type": str, "error": str}
    """
    if err is None:
        return {}

    return {
        "error_type": type(err).__name__,
        "error": str(err),
    }
