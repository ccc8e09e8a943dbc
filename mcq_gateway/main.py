"""Application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request

from mcq_gateway.api.errors import register_exception_handlers
from mcq_gateway.api.routes import router
from mcq_gateway.config import GatewaySettings, get_settings
from mcq_gateway.logging import bind_request_context, configure_logging, logger
from mcq_gateway.services.container import GatewayServices, build_services


def create_app(
    settings: GatewaySettings | None = None,
    services: GatewayServices | None = None,
) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    configure_logging(development=settings.is_development)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.services is None
        if owned:
            app.state.services = build_services(settings)
            if settings.is_development:
                await app.state.services.database.create_schema()
        logger.info("gateway_starting", environment=settings.environment)
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()
            logger.info("gateway_stopped")

    app = FastAPI(title="MCQ Gateway", lifespan=lifespan)
    # Injected services are usable without running the lifespan (ASGI test transports).
    app.state.services = services
    register_exception_handlers(app, development=settings.is_development)
    app.include_router(router)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = bind_request_context(
            request.method, request.url.path, request.headers.get("X-Request-ID")
        )
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    return app


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
