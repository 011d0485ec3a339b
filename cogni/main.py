"""
cogni.main
~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from cogni.api import room, ws
from cogni.core.logging import get_logger, setup_logging
from cogni.core.rate_limit import limiter
from cogni.core.settings import settings
from cogni.db import close_mongo, connect_mongo, get_database
from cogni.db.chat_repository import ChatRepository
from cogni.db.directory import CollaborationDirectory
from cogni.llm.gemini_provider import GeminiProvider
from cogni.schemas.api_response import ApiResponse
from cogni.search.tavily import DisabledSearchProvider, TavilySearchProvider
from cogni.services.hub import ChatHub

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    archive = directory = None
    if await connect_mongo():
        db = get_database()
        archive = ChatRepository(db)
        directory = CollaborationDirectory(db)

    if settings.search_enabled:
        search = TavilySearchProvider(
            settings.TAVILY_API_KEY,
            base_url=settings.TAVILY_BASE_URL,
            timeout=settings.SEARCH_TIMEOUT,
        )
    else:
        logger.warning("未配置 TAVILY_API_KEY，搜索增强已禁用")
        search = DisabledSearchProvider()

    gemini = GeminiProvider()
    app.state.hub = ChatHub.build(
        settings,
        should_respond=gemini,
        task_classifier=gemini,
        generator=gemini,
        search_provider=search,
        archive=archive,
        directory=directory,
    )
    logger.info(
        "🚀 应用已启动 | env=%s | assistant=%s | search=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.ASSISTANT_NAME,
        settings.search_enabled,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await app.state.hub.shutdown()
    await search.aclose()
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="多人房间聊天中继 + AI 参与者回复编排",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ──────────────────────────────────────────────────────
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
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(room.router, prefix="/api", tags=["Rooms"])
app.include_router(ws.router, tags=["WebSocket Chat"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "Internal server error"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(status_code=500, content=response.model_dump())


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行，并附带房间与 AI 回复计数。"""
    hub: ChatHub | None = getattr(request.app.state, "hub", None)
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "assistant": settings.ASSISTANT_NAME,
            "search_enabled": settings.search_enabled,
            "active_rooms": len(hub.registry.room_ids()) if hub else 0,
            "completed_replies": hub.orchestrator.completed_jobs if hub else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cogni.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
