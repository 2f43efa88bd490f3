import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware

from mockoauth.db.sessions import create_tables
from mockoauth.exceptions import AdminError, ApiError, OAuthError
from mockoauth.responses import JsonResponse, err
from mockoauth.routers import admin, auth, instructors, sessions

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Mock classroom API starting up")
    await create_tables()
    yield
    logger.info("Mock classroom API shutting down")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError) -> JsonResponse:
        return JsonResponse(status_code=exc.status_code, content=exc.to_content(), headers=exc.headers)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JsonResponse:
        return JsonResponse(
            status_code=exc.status_code,
            content=err(request, exc.code, exc.message),
            headers=exc.headers,
        )

    @app.exception_handler(AdminError)
    async def admin_error_handler(request: Request, exc: AdminError) -> JsonResponse:
        return JsonResponse(status_code=exc.status_code, content=exc.content)


def create_app() -> FastAPI:
    configure_logging()

    if os.getenv("ENVIRONMENT") == "prd":
        app = FastAPI(
            title="Mock Classroom API",
            version="0.1.0",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=lifespan,
        )
    else:
        app = FastAPI(title="Mock Classroom API", version="0.1.0", lifespan=lifespan)

    app.include_router(auth.router)
    app.include_router(admin.router)

    # Callers may put one extra segment after /api, e.g. /api/<tenant>/session
    for router in (sessions.router, instructors.router):
        app.include_router(router, prefix="/api")
        app.include_router(router, prefix="/api/{prefix}", include_in_schema=False)

    origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Generic health route to sanity check the API
    @app.get("/health")
    async def health() -> JsonResponse:
        """
        Health check route
        """
        return JsonResponse(
            content={"ok": True},
            status_code=status.HTTP_200_OK,
        )

    return app
