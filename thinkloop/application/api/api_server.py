from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from thinkloop.application.api.route import agent, search, tools
from thinkloop.application.container import Container
from thinkloop.domain.tool.errors import ToolError
from thinkloop.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


def create_app(container: Container) -> FastAPI:
    """Build the HTTP app around an already wired container"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await container.start()
        yield
        await container.stop()

    app = FastAPI(title="thinkloop", version="0.1.0", lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(ToolError)
    async def tool_error_handler(request: Request, exc: ToolError):
        log = logger.warning if exc.code < 500 else logger.error
        log("Request failed", path=request.url.path, error_type=exc.type, message=exc.message)
        return JSONResponse(
            status_code=exc.code,
            content=jsonable_encoder({
                "success": False,
                "type": exc.type,
                "message": exc.message,
                "details": exc.details
            })
        )

    app.include_router(agent.router)
    app.include_router(tools.router)
    app.include_router(search.router)

    @app.get("/health", tags=["health"])
    async def health():
        return {
            "status": "ok",
            "tools": container.registry.names(),
            "active_sessions": len(container.state_manager.active),
            "cache": container.cache.get_stats(),
            "metrics": metrics.get_metrics_summary()
        }

    return app
