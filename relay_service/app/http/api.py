from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from relay_service.app.http.routers.chat import router as chat_router
from relay_service.app.http.routers.health import router as health_router
from relay_service.app.http.routers.history import router as history_router
from relay_service.app.http.routers.sessions import router as sessions_router
from relay_service.app.http.routers.tools import router as tools_router
from relay_service.core.errors import RelayError, describe_error, http_status
from relay_service.core.logging import logger


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    status = http_status(exc)
    logger.warning(f"{request.method} {request.url.path} failed with {status}: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": describe_error(exc)})


def create_app(settings: Optional[Dict[str, Any]] = None, gen_service: Any = None):
    """Create and configure the FastAPI application with DI"""
    if gen_service is None:
        from relay_service.core.factory import ServiceFactory

        gen_service = ServiceFactory(settings).get_generation_service()

    app = FastAPI(title="relay")
    # store service on app state
    app.state.gen_svc = gen_service
    app.add_exception_handler(RelayError, relay_error_handler)

    # Create a new APIRouter for versioning
    v1_router = APIRouter(prefix="/api/v1")

    # include routers
    v1_router.include_router(chat_router)
    v1_router.include_router(health_router)
    v1_router.include_router(history_router)
    v1_router.include_router(sessions_router)
    v1_router.include_router(tools_router)

    app.include_router(v1_router)
    return app
