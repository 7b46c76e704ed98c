"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from rich.logging import RichHandler

from fincontext.config import settings
from fincontext.dependencies import build_services
from fincontext.routers.rag import router as rag_router

logger = logging.getLogger(__name__)

_QUIET_LOGGERS = ("httpx", "httpcore", "sentence_transformers", "urllib3")


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s - %(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(rich_tracebacks=True, markup=False)],
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # App loggers go to DEBUG; third-party libs stay at INFO
    if debug:
        logging.getLogger("fincontext").setLevel(logging.DEBUG)


configure_logging(settings.debug)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    services = build_services(settings)
    if not await services.rag.initialize():
        logger.warning("Starting without vector search; RAG endpoints will degrade")
    app.state.services = services
    yield
    await services.rag.close()


app = FastAPI(
    title="fincontext",
    description="Document retrieval and grounded answers for the finance dashboard",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)

app.include_router(rag_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}
