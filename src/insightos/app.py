"""FastAPI 应用工厂。"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import Response

from insightos import __version__
from insightos.config import settings
from insightos.workspace import Workspace

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：启动/关闭时执行。"""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("%s 启动中 ...", settings.app_name)
    logger.info("规划器: %s", type(app.state.workspace.planner).__name__)
    yield
    logger.info("%s 关闭中 ...", settings.app_name)


def create_app(workspace: Workspace | None = None) -> FastAPI:
    """创建 FastAPI 应用实例；每个应用持有独立的工作区。"""
    app = FastAPI(
        title=f"{settings.app_name} - DataOps API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.workspace = workspace if workspace is not None else Workspace()

    # CORS（开发模式允许所有来源）
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or secrets.token_hex(8)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    from insightos.api.routes import router as http_router

    app.include_router(http_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
