"""FastAPI application for on-demand orgdocs runs."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..context import PipelineContext
from ..errors import CatalogError, InvalidConfiguration, PipelineBusy
from ..lock import PipelineLock
from ..orchestrator import Orchestrator, RunSummary


class PipelineRequest(BaseModel):
    build: bool = True


class FailureModel(BaseModel):
    name: str
    stage: str
    cause: str


class RunResponse(BaseModel):
    command: str
    run_id: Optional[str] = None
    status: str
    exit_code: int
    discovered: int = 0
    desired: List[str] = []
    excluded: List[Dict[str, str]] = []
    built: bool = False
    failures: List[FailureModel] = []
    error: Optional[str] = None
    plan: Optional[Dict[str, List[str]]] = None


class HealthResponse(BaseModel):
    status: str


def create_app(orchestrator_factory: Callable[[], Orchestrator]) -> FastAPI:
    """Create the FastAPI application exposing orgdocs operations."""
    app = FastAPI(title="orgdocs", version=__version__)

    async def get_orchestrator() -> Orchestrator:
        # One orchestrator and lock handle per request.
        return orchestrator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/repositories", response_model=RunResponse)
    async def repositories(
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> JSONResponse:
        summary = await _in_executor(orchestrator.run_discover)
        return _respond(summary)

    @app.post("/pipeline", response_model=RunResponse)
    async def pipeline(
        payload: PipelineRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> JSONResponse:
        summary = await _in_executor(lambda: orchestrator.run_pipeline(build=payload.build))
        return _respond(summary)

    return app


def orchestrator_factory_for(context: PipelineContext) -> Callable[[], Orchestrator]:
    def _factory() -> Orchestrator:
        return Orchestrator(replace(context, lock=PipelineLock(context.workdir)))

    return _factory


def run_service(
    context: PipelineContext, host: str = "127.0.0.1", port: int = 8000
) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app(orchestrator_factory_for(context))
    uvicorn.run(app, host=host, port=port)


async def _in_executor(action: Callable[[], RunSummary]) -> RunSummary:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, action)


def _respond(summary: RunSummary) -> JSONResponse:
    payload = RunResponse(**summary.to_dict())
    return JSONResponse(status_code=_status_code(summary), content=payload.model_dump())


def _status_code(summary: RunSummary) -> int:
    error = summary.error
    if error is None:
        return 200
    if isinstance(error, PipelineBusy):
        return 409
    if isinstance(error, CatalogError):
        return 502
    if isinstance(error, InvalidConfiguration):
        return 400
    return 500


__all__ = ["create_app", "orchestrator_factory_for", "run_service"]
