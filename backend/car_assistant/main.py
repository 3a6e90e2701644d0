from __future__ import annotations
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .routers import http_api, ws_assistant
from .services.remote import remote_extractor
from .utils.ws_manager import WebSocketManager

# ===========================================================
# 📝 日志
# ===========================================================

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
)
LOGGER = logging.getLogger("car_assistant")


def create_app() -> FastAPI:
    """组装购车助手后端：CORS、HTTP 接口与助手 WebSocket"""
    application = FastAPI(title=settings.app_name)
    # 所有助手连接共享同一个连接表
    application.state.ws_manager = WebSocketManager()

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(http_api.router, prefix="/v1", tags=["http"])
    application.include_router(ws_assistant.router, tags=["ws"])

    @application.on_event("startup")
    async def on_startup() -> None:
        LOGGER.info(
            "[startup] 🚗 %s ready (env=%s, remote_configured=%s, debounce=%.1fs)",
            settings.app_name,
            settings.environment,
            remote_extractor.configured,
            settings.debounce_seconds,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        mgr: WebSocketManager = application.state.ws_manager
        await mgr.close_all()
        LOGGER.info("[shutdown] 🛑 all assistant sessions closed")

    @application.get("/health")
    async def health_check():
        """健康检查：远程凭证状态与在线会话"""
        mgr: WebSocketManager = application.state.ws_manager
        return {
            "status": "ok",
            "remote_configured": remote_extractor.configured,
            "active_sessions": mgr.active_sessions(),
        }

    return application


app = create_app()
