"""
draftroom.main
~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from draftroom.api import draft_ws, room_endpoints
from draftroom.catalog.loader import load_catalog
from draftroom.core.logging import get_logger, setup_logging
from draftroom.core.rate_limit import limiter
from draftroom.core.settings import settings
from draftroom.db import close_mongo, connect_mongo, get_database
from draftroom.db.room_repository import RoomRepository
from draftroom.schemas.api_response import ApiResponse
from draftroom.services.draft_gateway import DraftGateway
from draftroom.services.room_broadcaster import RoomHub
from draftroom.services.room_session import RoomNotFound

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子。目录不可读或数据库不可用时直接抛出，进程拒绝启动。"""
    # ── 启动 ──
    catalog = load_catalog(
        settings.catalog_path,
        name_column=settings.CATALOG_NAME_COLUMN,
        category_column=settings.CATALOG_CATEGORY_COLUMN,
        team_column=settings.CATALOG_TEAM_COLUMN,
    )
    await connect_mongo()
    repo = RoomRepository(
        get_database(),
        retention_seconds=settings.ROOM_RETENTION_SECONDS,
        collection_name=settings.ROOMS_COLLECTION,
    )
    await repo.ensure_indexes()

    app.state.gateway = DraftGateway(
        repo=repo,
        catalog=catalog,
        hub=RoomHub(),
        enforce_turn_order=settings.ENFORCE_TURN_ORDER,
    )
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s | catalog=%d",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
        len(catalog),
    )
    yield
    # ── 关闭 ──
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="多人选秀房间实时服务",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # prod 环境：仅允许 ALLOWED_ORIGINS 中配置的来源
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(room_endpoints.router, tags=["Room"])
app.include_router(draft_ws.router, tags=["WebSocket Draft"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(RoomNotFound)
async def room_not_found_handler(request: Request, exc: RoomNotFound) -> JSONResponse:
    response = ApiResponse.fail(msg="Room not found", code=404, data={"code": exc.code})
    return JSONResponse(status_code=404, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/", tags=["System"], response_class=PlainTextResponse)
async def liveness() -> str:
    """存活探针。"""
    return "Draft Server Running"


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    gateway: DraftGateway | None = getattr(request.app.state, "gateway", None)
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
            "catalog_size": len(gateway.catalog) if gateway else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "draftroom.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
