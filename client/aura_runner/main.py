import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from aura_runner.api.v1 import router as api_v1_router
from aura_runner.api.v1.websocket import router as ws_router
from aura_runner.core import database
from aura_runner.core.api_client import ApiClient
from aura_runner.core.auth import AuthSession
from aura_runner.core.config import settings
from aura_runner.core.log import configure_logging
from aura_runner.runner.registry import RunnerRegistry
from aura_runner.storage.repository import AUTH_NAMESPACE, StateRepository

logger = logging.getLogger(__name__)


def create_app(api: ApiClient | None = None, db_engine: AsyncEngine | None = None) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = db_engine or database.engine
        await database.init_db(engine)
        app.state.db_sessions = database.build_session_factory(engine)
        app.state.api = api or ApiClient()
        app.state.auth = AuthSession(
            app.state.api,
            store=StateRepository(app.state.db_sessions, AUTH_NAMESPACE),
        )
        if await app.state.auth.restore():
            logger.info("Restored persisted auth session")
        app.state.registry = RunnerRegistry(app.state.api)
        yield
        await app.state.registry.shutdown()
        await app.state.api.aclose()
        await engine.dispose()

    app = FastAPI(title="Aura exam runner", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        logger.debug(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc)},
        )

    @app.get("/")
    async def health_check() -> dict:
        return {"status": "ok", "version": "1.0"}

    app.include_router(api_v1_router, prefix="/api/v1")
    app.include_router(ws_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
