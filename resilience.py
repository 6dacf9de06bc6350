import asyncio
from typing import Optional

# 재시도는 하지 않는다. 실패는 다음 폴링 주기에 다시 시도됨.

async def with_timeout(coro, timeout_sec: Optional[float]):
    # timeout_sec이 None이면 클라이언트 자체 타임아웃에 맡긴다
    if timeout_sec is None:
        return await coro
    return await asyncio.wait_for(coro, timeout=timeout_sec)
