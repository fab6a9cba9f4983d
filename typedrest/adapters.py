"""
Adapters for running typedrest routers on different platforms.

This module provides adapters for:
- ASGI servers (Uvicorn, Hypercorn, etc.)
- AWS Lambda (API Gateway REST and HTTP APIs)

Adapters convert between external platform formats and the canonical
``Request``/``Response`` models. They also own the fault policy: an
exception escaping a handler is logged here and turned into a 500 response.
"""

import base64
import json
import logging
import os
import urllib.parse
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .exceptions import DocumentationIncompleteError
from .models import MultiValueHeaders, Outcome, Request, Response
from .openapi import WELL_KNOWN_PATH, generate_openapi
from .router import Router

logger = logging.getLogger(__name__)

ASGIReceive = Callable[[], Awaitable[Dict[str, Any]]]
ASGISend = Callable[[Dict[str, Any]], Awaitable[None]]
ASGIApp = Callable[[Dict[str, Any], ASGIReceive, ASGISend], Awaitable[None]]


def internal_error_response() -> Response:
    return Response(
        500,
        json.dumps({"error": "Internal Server Error"}),
        content_type="application/json",
    )


class Adapter(ABC):
    """
    Abstract base class for synchronous event adapters.

    Use this base class for platforms that use synchronous event handling,
    such as AWS Lambda. For ASGI servers, use ASGIAdapter instead.
    """

    @abstractmethod
    def handle_event(self, event: Any, context: Optional[Any] = None) -> Any:
        """
        Handle an external event and return the appropriate response format.

        Args:
            event: The external event (e.g., AWS Lambda event)
            context: Optional context (e.g., AWS Lambda context)

        Returns:
            Response in the format expected by the external system
        """
        pass

    @abstractmethod
    def convert_to_request(self, event: Any, context: Optional[Any] = None) -> Request:
        """Convert an external event to a Request object."""
        pass

    @abstractmethod
    def convert_from_response(self, response: Response, event: Any, context: Optional[Any] = None) -> Any:
        """Convert a Response object to the format expected by the external system."""
        pass


class ASGIAdapter:
    """
    ASGI 3.0 adapter for serving a Router from any ASGI server.

    The adapter handles:
    - Reading the request body to completion before validation
    - Converting ASGI scope/receive/send to a canonical Request
    - Serving the OpenAPI document ahead of normal route dispatch
    - Falling through to another ASGI app when no route matches the path
    - The ASGI lifespan protocol (startup freezes the router)

    Example:
        ```python
        from typedrest import Router
        from typedrest.adapters import ASGIAdapter

        router = Router([create_todo, list_todos])
        app = ASGIAdapter(router, openapi={"info": {"title": "TODO API", "version": "1.0.0"}})

        # uvicorn module:app
        ```

    Args:
        router: The router to dispatch to.
        openapi: OpenAPI document metadata (must include ``info``). When set,
            the generated document is served at ``openapi_path``.
        openapi_path: Where to serve the document. Defaults to the
            ``TYPEDREST_OPENAPI_PATH`` environment variable, else
            ``/.well-known/openapi.json``.
        fallback: ASGI app receiving requests whose path matches no route.
            Method mismatches are answered with 405 and never fall through.
    """

    def __init__(self,
                 router: Router,
                 openapi: Optional[Mapping[str, Any]] = None,
                 openapi_path: Optional[str] = None,
                 fallback: Optional[ASGIApp] = None):
        self.router = router
        self.openapi_metadata = openapi
        self.openapi_path = openapi_path or os.environ.get('TYPEDREST_OPENAPI_PATH') or WELL_KNOWN_PATH
        self.fallback = fallback

    async def __call__(self, scope: Dict[str, Any], receive: ASGIReceive, send: ASGISend):
        """
        ASGI 3.0 application entry point.

        Args:
            scope: ASGI connection scope dictionary
            receive: Async callable to receive ASGI messages
            send: Async callable to send ASGI messages
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        if scope["type"] != "http":
            await self._send_response(
                Response(404, "Not Found - Only HTTP protocol is supported", content_type="text/plain"),
                send,
            )
            return

        if self.openapi_metadata is not None and scope["path"] == self.openapi_path:
            await self._send_response(self._openapi_response(scope), send)
            return

        body = await self._read_body(receive)
        request = self.scope_to_request(scope, body)

        try:
            response = await self.router.dispatch(request)
        except Exception as e:
            logger.error(f"Unhandled exception processing {request.method} {request.path}: {e}", exc_info=True)
            response = internal_error_response()

        if response.outcome is Outcome.NOT_FOUND and self.fallback is not None:
            await self.fallback(scope, self._replay_receive(body, receive), send)
            return

        await self._send_response(response, send)

    async def _handle_lifespan(self, receive: ASGIReceive, send: ASGISend):
        """Handle the ASGI lifespan protocol.

        Startup ends the registration phase so that no route can be added
        once the server accepts connections.
        """
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                self.router.freeze()
                logger.info(f"Serving {len(self.router.routes)} route(s)")
                await send({"type": "lifespan.startup.complete"})

            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return

    @staticmethod
    async def _read_body(receive: ASGIReceive) -> bytes:
        """Receive the complete request body."""
        chunks: List[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            chunk = message.get("body", b"")
            if chunk:
                chunks.append(chunk)
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    @staticmethod
    def _replay_receive(body: bytes, receive: ASGIReceive) -> ASGIReceive:
        """Build a receive callable that hands the consumed body to another app."""
        replayed = False

        async def replay() -> Dict[str, Any]:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        return replay

    @staticmethod
    def scope_to_request(scope: Dict[str, Any], body: bytes) -> Request:
        """Convert an ASGI HTTP scope and its body into a canonical Request.

        ``raw_path`` is preferred over ``path`` so that percent-encoded
        slashes are decoded per segment by the router, not by the server.
        """
        raw_path = scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else scope["path"]

        query_string = scope.get("query_string", b"").decode("utf-8")
        query_params = dict(urllib.parse.parse_qsl(query_string, keep_blank_values=True))

        # ASGI uses lowercase names and bytes
        headers = MultiValueHeaders()
        for header_name, header_value in scope.get("headers", []):
            headers.add(header_name.decode("latin-1").lower(), header_value.decode("latin-1"))

        return Request(
            method=scope["method"],
            path=path,
            headers=headers,
            query_params=query_params,
            body=body or None,
        )

    def _openapi_response(self, scope: Dict[str, Any]) -> Response:
        """Generate the OpenAPI document for this request's host."""
        metadata = dict(self.openapi_metadata or {})
        if "servers" not in metadata:
            host = None
            for name, value in scope.get("headers", []):
                if name.decode("latin-1").lower() == "host":
                    host = value.decode("latin-1")
                    break
            if host is None and scope.get("server"):
                server_host, server_port = scope["server"]
                host = f"{server_host}:{server_port}"
            if host:
                metadata["servers"] = [{"url": f"{scope.get('scheme', 'http')}://{host}"}]

        try:
            document = generate_openapi(self.router.routes, metadata)
        except DocumentationIncompleteError as e:
            logger.error(f"Cannot serve OpenAPI document: {e}")
            return Response(
                500,
                json.dumps({"error": "OpenAPI document unavailable", "detail": str(e)}),
                content_type="application/json",
            )
        return Response(200, json.dumps(document), content_type="application/json")

    @staticmethod
    def _prepare_asgi_headers(response: Response, body: bytes) -> List[List[bytes]]:
        headers = []
        content_length_set = False
        for name, value in response.headers.items_all():
            if name.lower() == "content-length":
                content_length_set = True
            headers.append([name.encode("latin-1"), str(value).encode("latin-1")])

        if not content_length_set:
            headers.append([b"content-length", str(len(body)).encode("latin-1")])
        return headers

    async def _send_response(self, response: Response, send: ASGISend):
        """Send a canonical Response through ASGI."""
        body = (response.body or "").encode("utf-8")
        await send({
            "type": "http.response.start",
            "status": response.status_code,
            "headers": self._prepare_asgi_headers(response, body),
        })
        await send({
            "type": "http.response.body",
            "body": body,
        })


def create_asgi_app(router: Router, **kwargs: Any) -> ASGIAdapter:
    """Create an ASGI application for a router; see ``ASGIAdapter``."""
    return ASGIAdapter(router, **kwargs)


class AwsApiGatewayAdapter(Adapter):
    """
    Adapter for AWS API Gateway Lambda proxy integration events.

    Handles events from:
    - API Gateway REST APIs (v1) - payload format 1.0
    - API Gateway HTTP APIs (v2) and Lambda Function URLs - payload format 2.0

    Version detection is automatic: v2 events carry ``version: "2.0"``.

    Example:
        ```python
        adapter = AwsApiGatewayAdapter(router)

        def lambda_handler(event, context):
            return adapter.handle_event(event, context)
        ```
    """

    def __init__(self, router: Router):
        self.router = router
        self.router.freeze()

    def handle_event(self, event: Dict[str, Any], context: Optional[Any] = None) -> Dict[str, Any]:
        """Handle an API Gateway event and return the API Gateway response dictionary."""
        request = self.convert_to_request(event, context)
        try:
            response = self.router.dispatch_sync(request)
        except Exception as e:
            logger.error(f"Unhandled exception processing {request.method} {request.path}: {e}", exc_info=True)
            response = internal_error_response()
        return self.convert_from_response(response, event, context)

    def convert_to_request(self, event: Dict[str, Any], context: Optional[Any] = None) -> Request:
        """Convert an API Gateway event to a Request object."""
        if event.get("version") == "2.0":
            return self._parse_v2_event(event)
        return self._parse_v1_event(event)

    def _parse_v1_event(self, event: Dict[str, Any]) -> Request:
        """Parse an API Gateway REST API (v1) event."""
        headers = MultiValueHeaders()
        multi_headers = event.get("multiValueHeaders") or {}
        if multi_headers:
            for name, values in multi_headers.items():
                for value in values or []:
                    headers.add(name.lower(), value)
        else:
            for name, value in (event.get("headers") or {}).items():
                if value is not None:
                    headers.add(name.lower(), value)

        query_params: Dict[str, str] = {}
        multi_query = event.get("multiValueQueryStringParameters") or {}
        if multi_query:
            # Repeated keys keep their last value
            for name, values in multi_query.items():
                if values:
                    query_params[name] = values[-1]
        else:
            query_params = dict(event.get("queryStringParameters") or {})

        return Request(
            method=event.get("httpMethod", "GET"),
            path=event.get("path", "/"),
            headers=headers,
            query_params=query_params,
            body=self._decode_body(event),
        )

    def _parse_v2_event(self, event: Dict[str, Any]) -> Request:
        """Parse an API Gateway HTTP API (v2) event."""
        http_context = event.get("requestContext", {}).get("http", {})

        headers = MultiValueHeaders()
        for name, value in (event.get("headers") or {}).items():
            if value is not None:
                headers.add(name.lower(), value)
        cookies = event.get("cookies") or []
        if cookies:
            headers.set("cookie", "; ".join(cookies))

        raw_query = event.get("rawQueryString", "")
        query_params = dict(urllib.parse.parse_qsl(raw_query, keep_blank_values=True))

        return Request(
            method=http_context.get("method", "GET"),
            path=event.get("rawPath") or http_context.get("path", "/"),
            headers=headers,
            query_params=query_params,
            body=self._decode_body(event),
        )

    @staticmethod
    def _decode_body(event: Dict[str, Any]) -> Optional[str]:
        body = event.get("body")
        if body is None:
            return None
        if event.get("isBase64Encoded", False):
            return base64.b64decode(body).decode("utf-8")
        return body

    def convert_from_response(self, response: Response, event: Dict[str, Any], context: Optional[Any] = None) -> Dict[str, Any]:
        """Convert a Response into an API Gateway proxy response."""
        single: Dict[str, str] = {}
        multi: Dict[str, List[str]] = {}
        cookies: List[str] = []
        for name, values in response.headers.to_multi_dict().items():
            if name.lower() == "set-cookie":
                cookies.extend(values)
            single[name] = values[-1]
            multi[name] = values

        result: Dict[str, Any] = {
            "statusCode": response.status_code,
            "headers": single,
            "body": response.body or "",
            "isBase64Encoded": False,
        }
        if event.get("version") == "2.0":
            single.pop(self._cookie_header_name(single), None)
            if cookies:
                result["cookies"] = cookies
        else:
            result["multiValueHeaders"] = multi
        return result

    @staticmethod
    def _cookie_header_name(headers: Dict[str, str]) -> str:
        for name in headers:
            if name.lower() == "set-cookie":
                return name
        return "Set-Cookie"
