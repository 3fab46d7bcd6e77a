"""
main.py — FastAPI Entry Point for the Storefront Gateway

This module provides the HTTP interface of the storefront gateway. It serves the GraphQL
API used by the storefront and wires the orchestrators to the platform clients.

Responsibilities:
    • Create one commerce and one identity client per process and close them on shutdown
    • Hand explicit client/orchestrator handles to every GraphQL request (no globals)
    • Allow credentialed CORS requests from the configured storefront origins
    • Provide system health information
"""

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from strawberry.fastapi import GraphQLRouter

from .cart_pipeline import CartPipeline
from .catalog import CatalogService
from .clients import CommerceClient, IdentityClient, build_http_client
from .config import Settings
from .guest_orders import GuestOrderReconciler
from .logging_config import get_logger, setup_logging
from .schema import schema
from .social_identity import CustomerRegistrar, SocialIdentityReconciler


@dataclass
class Services:
    """Orchestrator handles shared by all requests of one process."""
    commerce: CommerceClient
    identity: IdentityClient
    catalog: CatalogService
    carts: CartPipeline
    social: SocialIdentityReconciler
    registrar: CustomerRegistrar
    guest_orders: GuestOrderReconciler

    async def aclose(self):
        await self.commerce.aclose()
        await self.identity.aclose()


def build_services(settings: Settings) -> Services:
    """
    Builds the platform clients and the orchestrators on top of them.

    Args:
        settings (Settings): Platform addresses and credentials.

    Returns:
        Services: Ready-to-use orchestrator handles.
    """
    commerce = CommerceClient(settings, client=build_http_client(settings))
    identity = IdentityClient(settings, client=build_http_client(settings))
    return Services(
        commerce=commerce,
        identity=identity,
        catalog=CatalogService(commerce),
        carts=CartPipeline(commerce),
        social=SocialIdentityReconciler(identity),
        registrar=CustomerRegistrar(commerce, identity),
        guest_orders=GuestOrderReconciler(commerce),
    )


async def get_context(request: Request) -> dict:
    """Adds the process-wide orchestrators to strawberry's default request context."""
    return {"services": request.app.state.services}


def create_app(settings: Settings = None, services: Services = None) -> FastAPI:
    """
    Creates the FastAPI application.

    Args:
        settings (Settings, optional): Defaults to `Settings.from_env()`.
        services (Services, optional): Prebuilt orchestrators (e.g. test doubles).
            When omitted they are built from `settings` at startup.

    Returns:
        FastAPI: The application with `/graphql` and `/health` mounted.
    """
    settings = settings or Settings.from_env()
    log = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is None:
            setup_logging(settings.log_file)
        log.info("Storefront gateway starting...")
        app.state.services = services or build_services(settings)
        try:
            yield
        finally:
            if services is None:
                await app.state.services.aclose()
            log.info("Storefront gateway stopped.")

    app = FastAPI(title="Storefront Gateway", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(GraphQLRouter(schema, context_getter=get_context), prefix="/graphql")

    # Health Check Endpoint
    @app.get("/health")
    def health_check():
        """
        Simple health check endpoint for monitoring systems and container orchestrators.

        Returns:
            dict: A basic JSON object indicating service availability.
        """
        return {"status": "ok"}

    return app


def run():
    """Console entry point: serves the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "4000")))


app = create_app()
