"""
Agora - FastAPI Application
=============================
Creates and configures the FastAPI web application.

Responsibilities:
    - Load configuration and build the store collaborators
    - Create the session authenticator and the realtime hub
    - Register page/data routes and the /ws realtime endpoint
    - Turn NotAuthenticated into a redirect to /login
    - Check store connectivity at startup, flush pending writes at shutdown

Architecture:
    Static assets are served from web/static, pages are Jinja2 templates
    in web/templates. The realtime channel is available at /ws.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from agora.auth import AuthManager
from agora.config import ConfigManager
from agora.errors import NotAuthenticated
from agora.hub import RealtimeHub
from agora.routes import create_router
from agora.storage import Stores, build_stores, check_connections, close_stores
from agora.websocket import serve_websocket

logger = logging.getLogger(__name__)


def create_app(project_dir: str | None = None, stores: Stores | None = None) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        project_dir: Root directory of the Agora project (config.yaml, .env,
                     data/, web/). If None, auto-detected from this file's location.
        stores:      Pre-built stores; built from configuration when None.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    # -- Resolve directories ---------------------------------------------------
    if project_dir is None:
        project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    package_dir = os.path.dirname(os.path.abspath(__file__))
    templates_dir = os.path.join(package_dir, "web", "templates")
    static_dir = os.path.join(package_dir, "web", "static")

    config_manager = ConfigManager(project_dir)
    config = config_manager.load()
    if "_config_error" in config:
        logger.error("config.yaml could not be read, using defaults: %s", config["_config_error"])

    os.makedirs(config_manager.data_dir, exist_ok=True)

    # -- Initialize collaborators ----------------------------------------------
    if stores is None:
        stores = build_stores(config["storage"], config_manager.data_dir)

    auth_manager = AuthManager(
        stores.credentials,
        secret_key=config_manager.get_secret_key(),
        idle_timeout=config["session"]["idle_timeout"],
        cookie_name=config["session"]["cookie_name"],
    )
    hub = RealtimeHub(
        stores.messages,
        stores.catalog,
        persistence_policy=config["hub"]["persistence_policy"],
    )
    fail_fast = bool(config["storage"].get("fail_fast"))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await check_connections(stores, fail_fast=fail_fast)
        yield
        await hub.drain()
        await close_stores(stores)

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="Agora",
        description="Session-gated realtime catalog and chat",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    templates = Jinja2Templates(directory=templates_dir)

    app.state.config = config
    app.state.stores = stores
    app.state.auth_manager = auth_manager
    app.state.hub = hub
    app.state.templates = templates

    @app.exception_handler(NotAuthenticated)
    async def redirect_to_login(request: Request, exc: NotAuthenticated):
        return RedirectResponse(url="/login", status_code=303)

    app.include_router(create_router(auth_manager, templates))

    # -- Realtime endpoint -----------------------------------------------------
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Live catalog and chat channel, gated by the session cookie."""
        await serve_websocket(websocket, hub, auth_manager)

    if os.path.isdir(static_dir):
        app.mount("/static", StaticFiles(directory=static_dir), name="static")

    return app
