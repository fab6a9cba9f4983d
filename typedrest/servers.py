"""
Run a router under an ASGI server.

typedrest has no HTTP server of its own. ``serve`` freezes the router, wraps
it in an ``ASGIAdapter`` (OpenAPI document, fallback app) and hands that to
Uvicorn or Hypercorn. Both are optional: ``pip install 'typedrest[servers]'``.
"""

import asyncio
import importlib
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .adapters import ASGIAdapter, ASGIApp, create_asgi_app
from .router import Router

logger = logging.getLogger(__name__)

INSTALL_HINT = "pip install 'typedrest[servers]'"


def _require(module: str):
    try:
        return importlib.import_module(module)
    except ImportError as e:
        raise ImportError(f"{module} is not installed. Install with: {INSTALL_HINT}") from e


def _run_uvicorn(app: ASGIAdapter, host: str, port: int, options: Dict[str, Any]) -> None:
    uvicorn = _require("uvicorn")
    uvicorn.run(app, host=host, port=port, **options)


def _run_hypercorn(app: ASGIAdapter, host: str, port: int, options: Dict[str, Any]) -> None:
    # Options are hypercorn Config attributes, e.g. certfile, keyfile, alpn_protocols.
    _require("hypercorn")
    from hypercorn.asyncio import serve as hypercorn_serve
    from hypercorn.config import Config

    config = Config.from_mapping({"bind": [f"{host}:{port}"], **options})
    asyncio.run(hypercorn_serve(app, config))


SERVERS: Mapping[str, Callable[[ASGIAdapter, str, int, Dict[str, Any]], None]] = {
    "uvicorn": _run_uvicorn,
    "hypercorn": _run_hypercorn,
}


def serve(router: Router,
          server: str = "uvicorn",
          host: str = "127.0.0.1",
          port: int = 8000,
          *,
          openapi: Optional[Dict[str, Any]] = None,
          openapi_path: Optional[str] = None,
          fallback: Optional[ASGIApp] = None,
          **server_options: Any) -> None:
    """
    Serve *router* until the server process stops.

    Args:
        router: Routes to serve. Registration is closed before the server starts.
        server: "uvicorn" or "hypercorn"
        host: Interface to bind
        port: Port to bind
        openapi: OpenAPI metadata; when given, the generated document is
            served at ``openapi_path`` (default ``/.well-known/openapi.json``)
        openapi_path: Where to serve the document
        fallback: ASGI app that receives requests no route matches
        **server_options: Passed to ``uvicorn.run`` or set on the hypercorn ``Config``

    Raises:
        ValueError: If *server* is not a supported server
        ImportError: If the server package is not installed
    """
    runner = SERVERS.get(server)
    if runner is None:
        raise ValueError(f"Unknown server: {server}. Supported servers: {', '.join(SERVERS)}")

    router.freeze()
    app = create_asgi_app(router, openapi=openapi, openapi_path=openapi_path, fallback=fallback)
    logger.info(f"Serving {len(router.routes)} route(s) with {server} on {host}:{port}")
    runner(app, host, port, server_options)
