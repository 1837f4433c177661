from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from mftconsole.api.deps import LoginRequired, is_htmx, render, wants_json
from mftconsole.api.routes import admin, api, auth, configs, dashboard, history, jobs, notifications, profile, two_factor
from mftconsole.core.config import get_settings
from mftconsole.core.logging_setup import setup_logging
from mftconsole.db.session import init_db
from mftconsole.services.users import ensure_admin

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie,
        same_site="lax",
    )
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.on_event("startup")
    def on_startup() -> None:
        setup_logging(settings)
        init_db()
        ensure_admin(settings)
        logger.info("%s started (database %s)", settings.app_name, settings.db_path)

    @app.exception_handler(LoginRequired)
    async def login_required(request: Request, exc: LoginRequired) -> Response:
        if wants_json(request) or is_htmx(request):
            return JSONResponse(
                {"detail": "Not authenticated"},
                status_code=status.HTTP_401_UNAUTHORIZED,
                headers={"HX-Redirect": "/login"} if is_htmx(request) else None,
            )
        return RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> Response:
        if wants_json(request) or is_htmx(request):
            return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
        return render(
            request,
            "error.html",
            {"status_code": exc.status_code, "detail": exc.detail},
            status_code=exc.status_code,
        )

    app.include_router(auth.router)
    app.include_router(dashboard.router)
    app.include_router(configs.router)
    app.include_router(jobs.router)
    app.include_router(history.router)
    app.include_router(notifications.router)
    app.include_router(profile.router)
    app.include_router(two_factor.router)
    app.include_router(admin.router)
    app.include_router(api.router)
    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("mftconsole.main:app", host=settings.host, port=settings.port, log_config=None)
