"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + static 파일 서빙
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from functools import partial
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse

from config import BACKEND_BASE_URL, STATIC_DIR
from api.routes import router
import api.session as session
from cbt_session.services.controller import ExamSessionController
from cbt_session.services.integrity.connectivity import check_network_connectivity
from cbt_session.services.integrity.media import MediaProvider

logger = logging.getLogger(__name__)

SESSION_COOKIE = "cbt_session"
CLEANUP_INTERVAL = 300  # 5분

ControllerFactory = Callable[[str, MediaProvider], ExamSessionController]


def default_controller_factory(exam_id: str, media: MediaProvider) -> ExamSessionController:
    return ExamSessionController(
        exam_id,
        media=media,
        network_probe=partial(check_network_connectivity, BACKEND_BASE_URL),
    )


async def _cleanup_loop() -> None:
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL)
        expired = session.cleanup_expired()
        if expired:
            await session.close_all(expired)
            logger.info(f"만료 세션 {len(expired)}개 정리")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    task = asyncio.create_task(_cleanup_loop(), name="session-cleanup")
    try:
        yield
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await session.close_all(session.clear())


def create_app(controller_factory: Optional[ControllerFactory] = None) -> FastAPI:
    app = FastAPI(title="CBT Exam Session", docs_url=None, redoc_url=None, lifespan=_lifespan)
    app.state.controller_factory = controller_factory or default_controller_factory

    # CORS (모바일 브라우저 등 다양한 출처 허용)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=session.SESSION_TTL,
        )
        return response

    app.include_router(router)

    # static 파일 마운트
    if os.path.isdir(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    # 루트 → index.html
    @app.get("/")
    async def serve_index():
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    return app
