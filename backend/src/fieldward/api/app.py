"""FastAPI application factory.

Routes belong to the caller. The factory builds fieldward's services on
startup, exposes them through ``get_services`` and installs the error
handlers, so any route that calls the record service gets domain errors
rendered consistently:

    router = APIRouter()

    @router.post("/records/{entity}")
    def create(entity: str, payload: dict, services=Depends(get_services)):
        return services.records.create(entity, payload, role)

    app = create_app(routers=[router])
"""

from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import APIRouter, FastAPI, Request

from fieldward.api.errors import install_error_handlers
from fieldward.bootstrap import FieldwardServices, initialize_services
from fieldward.config import Settings


def get_services(request: Request) -> FieldwardServices:
    """Dependency returning the services built at startup."""
    return request.app.state.services


def create_app(
    settings: Settings | None = None, routers: Iterable[APIRouter] = ()
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        services = initialize_services(settings)
        app.state.services = services
        try:
            yield
        finally:
            services.close()

    app = FastAPI(title="fieldward", lifespan=lifespan)
    install_error_handlers(app)
    for router in routers:
        app.include_router(router)
    return app
