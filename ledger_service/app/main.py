from __future__ import annotations

import os
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI

from common.logger import setup_logger
from common.middleware.request_trace import RequestTraceMiddleware

from .api.errors import register_exception_handlers
from .api.health import router as health_router
from .api.v1 import api_router
from .event_handlers.compensation_consumer import run_compensation_consumer
from .scheduler.reconciliation_scheduler import (
    start_reconciliation_scheduler,
    stop_reconciliation_scheduler,
)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    """애플리케이션 생명주기 동안 백그라운드 작업을 관리한다.

    - 사가 복구 / 이용권 정리 / 원장 대조 스케줄러 스레드
    - 운영자 큐(보상 토픽)를 소비하는 Kafka 컨슈머 스레드
    """

    start_reconciliation_scheduler()

    compensation_stop_flag = [False]
    compensation_thread = threading.Thread(
        target=run_compensation_consumer,
        args=(compensation_stop_flag,),
        name="compensation-consumer",
        daemon=True,
    )
    compensation_thread.start()

    try:
        yield
    finally:
        compensation_stop_flag[0] = True
        compensation_thread.join(timeout=10.0)
        stop_reconciliation_scheduler()


def create_app(*, with_background_jobs: bool = True) -> FastAPI:
    setup_logger(name="ledger-service")
    app = FastAPI(
        title="QuizPrize Ledger Service",
        version="0.1.0",
        lifespan=lifespan if with_background_jobs else None,
    )

    # 공통 Request/Span ID 로그 미들웨어
    app.add_middleware(RequestTraceMiddleware)
    register_exception_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def main() -> None:
    import uvicorn

    port = int(os.getenv("LEDGER_SERVICE_PORT", "8003"))
    uvicorn.run(
        "ledger_service.app.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
