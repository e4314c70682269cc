import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from api.dependencies import AuthGuard
from api.v1 import auth, todos, users
from core.config import Settings, get_settings
from core.errors import AppError, InvalidJSON, ValidationFailed
from core.security import AccessTokenCodec, PasswordHasher
from db.base import initialize_database
from db.session import build_engine, build_session_factory
from db.stores.blacklist_store import BlacklistStore
from db.stores.refresh_token_store import RefreshTokenStore
from db.stores.todo_store import TodoStore
from db.stores.user_store import UserStore
from services.auth_service import AuthService
from services.todo_service import TodoService
from services.token_cleanup import token_cleanup_loop
from utils.logging_config import configure_logging, RequestContextMiddleware

logger = logging.getLogger("todo_api")


def _task_done(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.APP_NAME} v{settings.VERSION}")
    if settings.uses_default_secret:
        logger.warning("JWT_SECRET is the built-in default; set a real secret outside development")

    if settings.CREATE_TABLES_ON_STARTUP:
        try:
            await initialize_database(app.state.engine)
        except SQLAlchemyError as e:
            logger.warning(f"SQL init skipped or failed: {e}")

    cleanup_task = None
    if settings.TOKEN_GC_INTERVAL_SECONDS > 0:
        cleanup_task = asyncio.create_task(
            token_cleanup_loop(app.state.blacklist, app.state.refresh_tokens, settings.TOKEN_GC_INTERVAL_SECONDS),
            name="token-cleanup",
        )
        cleanup_task.add_done_callback(_task_done)

    yield

    logger.info("Shutting down...")
    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
    await app.state.engine.dispose()
    logger.info("Disposed SQL engine")


def _validation_details(exc: RequestValidationError) -> dict:
    details = {}
    for error in exc.errors():
        loc = error.get("loc") or ("body",)
        details.setdefault(str(loc[-1]), error.get("msg", ""))
    return details


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code} at {request.url.path}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        if any(error.get("type") == "json_invalid" for error in exc.errors()):
            error = InvalidJSON()
        else:
            error = ValidationFailed(_validation_details(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    # Global exception handler to ensure 500s for unexpected errors
    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error at {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=AppError().to_dict())


def create_app(settings: Optional[Settings] = None, engine: Optional[AsyncEngine] = None) -> FastAPI:
    """Build the application and its object graph; nothing here is a module-level singleton."""
    settings = settings or get_settings()
    configure_logging(settings, "todo_api")

    engine = engine or build_engine(settings)
    session_factory = build_session_factory(engine)

    users_store = UserStore(session_factory)
    blacklist = BlacklistStore(session_factory)
    refresh_tokens = RefreshTokenStore(session_factory)
    codec = AccessTokenCodec(
        settings.JWT_SECRET,
        blacklist,
        algorithm=settings.ALGORITHM,
        lifetime=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    auth_service = AuthService(
        users_store,
        blacklist,
        refresh_tokens,
        codec,
        PasswordHasher(settings.BCRYPT_ROUNDS),
        refresh_lifetime=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.blacklist = blacklist
    app.state.refresh_tokens = refresh_tokens
    app.state.auth_service = auth_service
    app.state.todo_service = TodoService(TodoStore(session_factory))
    app.state.guard = AuthGuard(auth_service, cookie_name=settings.AUTH_COOKIE_NAME)

    register_exception_handlers(app)

    # Add GZip compression for larger JSON payloads
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # Add logging context middleware to capture the API path
    app.add_middleware(RequestContextMiddleware)

    # CORS outermost so headers are present on every response
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    app.include_router(auth.router, prefix=settings.API_V1_STR, tags=["Authentication"])
    app.include_router(users.router, prefix=settings.API_V1_STR, tags=["Users"])
    app.include_router(todos.router, prefix=settings.API_V1_STR, tags=["Todos"])

    @app.get("/health")
    async def health_check():
        # Actively check DB connectivity
        try:
            async with session_factory() as db:
                await db.execute(text("SELECT 1"))
            db_status = "sql_connected"
        except SQLAlchemyError as e:
            logger.warning(f"Health SQL check failed: {e}")
            db_status = "sql_unavailable"
        return {"status": "healthy", "message": "Todo API is running", "database": db_status}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=app.state.settings.PORT)
