import logging
import traceback
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from otel import setup_tracing
from rollout import RemoteRollout
from rollout_config import RolloutSettings, build_rollout
from schemas import HealthResponse, RolloutResponse

load_dotenv()

# 로깅 설정 (uvicorn 로그와 통합)
logger = logging.getLogger("uvicorn")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: rollout 폴링 시작 (첫 fetch는 기다리지 않음)
    settings = RolloutSettings.from_env()
    if setup_tracing():
        logger.info("LIFESPAN: OTLP tracing enabled.")

    logger.info(f"LIFESPAN: Starting rollout source (backend={settings.backend}, application={settings.application})")
    app.state.settings = settings
    app.state.rollout = await build_rollout(settings)

    yield

    # Shutdown: 폴링 task 정리
    logger.info("LIFESPAN: Shutdown initiated.")
    rollout = app.state.rollout
    if isinstance(rollout, RemoteRollout):
        try:
            await rollout.stop()
        finally:
            # stop이 실패해도 connection pool은 닫는다
            close = getattr(rollout.store, "close", None)
            if close is not None:
                try:
                    await close()
                except Exception as e:
                    logger.error(f"LIFESPAN: Failed to close record store: {e}")
                    traceback.print_exc()
    logger.info("LIFESPAN: Rollout source stopped.")

app = FastAPI(title="Canary Rollout Server", lifespan=lifespan)

@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}

@app.get("/rollout", response_model=RolloutResponse)
def rollout(request: Request):
    src = request.app.state.rollout
    snap = src.snapshot()
    return RolloutResponse(
        source="remote" if isinstance(src, RemoteRollout) else "static",
        application=request.app.state.settings.application,
        value=snap.value,
        ok=snap.ok,
        degraded=snap.degraded,
        updated_at=snap.updated_at,
    )

@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
