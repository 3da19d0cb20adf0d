"""Bitbucket pool HTTP server implementation using FastAPI."""

import asyncio
import sys
from contextlib import asynccontextmanager
from typing import List

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel

from bitbucket_pool import __version__
from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.managers.container_manager import ContainerManager
from bitbucket_pool.managers.pool_manager import PoolManager
from bitbucket_pool.managers.pool_supervisor import PoolSupervisor
from bitbucket_pool.models.members import Member
from bitbucket_pool.repositories.members import NameEncodedMemberRepository
from bitbucket_pool.utils import get_logger, setup_logging
from bitbucket_pool.utils.docker_client import (
    close_docker_client,
    get_docker_client,
    is_reachable,
)
from bitbucket_pool.utils.exceptions import MemberNotFoundError, PoolError
from bitbucket_pool.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str
    docker_connected: bool
    supervisor: dict | None = None
    version: str = __version__


def create_app(
    pool: PoolManager,
    supervisor: PoolSupervisor | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        pool: Pool facade serving every route
        supervisor: Background task owner, started and stopped with the app
        settings: Settings (defaults to the cached settings)

    Returns:
        FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start background tasks on startup and stop them on shutdown."""
        if supervisor is not None:
            await supervisor.start()

        yield

        logger.info("Shutting down Bitbucket pool server")
        if supervisor is not None:
            await supervisor.stop()
        await pool.provisioning.bitbucket_client.aclose()

    app = FastAPI(
        title="Bitbucket Pool",
        description="Hands out disposable Bitbucket Server instances for test pipelines",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(MemberNotFoundError)
    async def member_not_found_handler(request: Request, exc: MemberNotFoundError):
        logger.warning(
            "Container not found",
            extra={"path": request.url.path, "container_id": exc.member_id},
        )
        return PlainTextResponse(f"{exc}\n", status_code=404)

    @app.exception_handler(PoolError)
    async def pool_error_handler(request: Request, exc: PoolError):
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error_type": type(exc).__name__, "error": str(exc)},
        )
        return PlainTextResponse(f"{exc}\n", status_code=500)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(
            "Unexpected error handling request",
            extra={"path": request.url.path, "error_type": type(exc).__name__, "error": str(exc)},
        )
        return PlainTextResponse(f"{exc}\n", status_code=500)

    router = APIRouter(prefix=settings.normalized_base_path)

    @router.get("/container/all", response_model=List[Member])
    async def get_all_containers() -> List[Member]:
        """List every pool member."""
        return await pool.list_all()

    @router.get("/freecontainer", response_model=Member)
    async def get_free_container() -> Member:
        """Claim a free member, provisioning one if none are free."""
        return await pool.allocate()

    @router.get("/container/{container_id}", response_model=Member)
    async def get_container_by_id(container_id: str) -> Member:
        """Fetch one member."""
        return await pool.get_by_id(container_id)

    @router.post("/container/", response_model=Member)
    async def create_container() -> Member:
        """Provision a new member without claiming it."""
        return await pool.create_explicit()

    @router.delete("/container/{container_id}", response_class=PlainTextResponse)
    async def remove_container(container_id: str) -> str:
        """Stop and remove a member."""
        await pool.remove_by_id(container_id)
        return f"container successfully removed: {container_id}"

    @router.get("/health", response_model=HealthCheckResponse)
    async def health() -> HealthCheckResponse:
        """Report Docker connectivity and background task state."""
        docker_connected = await asyncio.to_thread(
            is_reachable, pool.container_manager.docker_client
        )

        return HealthCheckResponse(
            status="healthy" if docker_connected else "degraded",
            docker_connected=docker_connected,
            supervisor=supervisor.status() if supervisor is not None else None,
        )

    @router.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus metrics."""
        return Response(
            content=get_metrics_collector().get_metrics(),
            media_type=CONTENT_TYPE_LATEST,
        )

    app.include_router(router)
    return app


def main() -> None:
    """Main entry point for the Bitbucket pool server."""
    settings = get_settings()

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger.info(
        "Starting Bitbucket pool server",
        extra={
            "version": __version__,
            "prefix": settings.prefix,
            "host": settings.host,
            "port": settings.port,
            "base_path": settings.normalized_base_path,
            "max_pool_size": settings.max_pool_size,
            "initial_pool_size": settings.initial_pool_size,
        },
    )

    try:
        docker_client = get_docker_client(settings)
    except Exception as e:
        logger.error("Failed to initialize Docker client", extra={"error": str(e)})
        sys.exit(1)

    container_manager = ContainerManager(docker_client, settings)
    repository = NameEncodedMemberRepository(container_manager, settings)
    pool = PoolManager(container_manager, repository, settings=settings)
    supervisor = PoolSupervisor(pool, settings)
    app = create_app(pool, supervisor, settings)

    try:
        uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
    except Exception as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)
    finally:
        close_docker_client()
        logger.info("Bitbucket pool server stopped")


if __name__ == "__main__":
    main()
