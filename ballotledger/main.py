# main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .config import BackendMode
from .coordinator import Coordinator, build_coordinator
from .errors import CoordinatorError
from .routes.admin_routes import router as admin_router
from .routes.election_routes import router as election_router
from .routes.vote_routes import vote_router
from .routes.voter_routes import router as voter_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def coordinator_error_handler(request: Request, exc: CoordinatorError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(coordinator: Optional[Coordinator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "coordinator", None) is None:
            app.state.coordinator = build_coordinator()
        if app.state.coordinator.mode == BackendMode.LIVE:
            await app.state.coordinator.content.ensure_indexes()
        yield

    app = FastAPI(title="Ballot Ledger Coordinator", lifespan=lifespan)
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CoordinatorError, coordinator_error_handler)

    app.include_router(admin_router)
    app.include_router(election_router)
    app.include_router(voter_router)
    app.include_router(vote_router)

    @app.get("/health", tags=["Health"])
    async def health():
        coordinator = app.state.coordinator
        return {
            "status": "ok",
            "backend_mode": coordinator.mode.value if coordinator else config.BACKEND_MODE.value,
        }

    return app


app = create_app()
