"""FastAPI 应用入口。"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .apps.game.controllers.rooms import router as rooms_router
from .config import ALLOWED_ORIGINS, APP_ENV, APP_NAME
from .db import close_db, init_db
from .exceptions import GomokuError, StorageError, ValidationError
from .services.cleanup_service import start_cleanup_scheduler, stop_cleanup_scheduler
from .services.notification_gateway import notification_gateway
from .services.redis_service import close_redis_client

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：启动时初始化，停止时清理资源。"""
    # 启动时执行
    await init_db()
    notification_gateway.start_relay()
    start_cleanup_scheduler()
    logger.info("%s 已启动（环境: %s）", APP_NAME, APP_ENV)

    yield

    # 停止时执行
    stop_cleanup_scheduler()
    notification_gateway.stop_relay()
    await close_redis_client()
    await close_db()


app = FastAPI(title=APP_NAME, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(rooms_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    return await call_next(request)


@app.exception_handler(GomokuError)
async def handle_gomoku_error(request: Request, exc: GomokuError) -> JSONResponse:
    """业务异常统一转换为 JSON 错误响应。"""
    if isinstance(exc, StorageError):
        logger.error("存储异常: %s %s -> %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.error_code},
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求体校验失败与业务参数错误使用同一种响应格式。"""
    errors = exc.errors()
    field = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"success": False, "error": f"请求参数不合法: {field}", "code": ValidationError.__name__},
    )


@app.get("/")
async def root() -> PlainTextResponse:
    return PlainTextResponse("Gomoku Backend is running!")
