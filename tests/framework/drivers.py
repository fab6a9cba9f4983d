"""
Driver implementations for different execution environments.

This is the third layer in Dave Farley's 4-layer testing architecture.
Drivers know how to translate DSL requests into actual system calls.
"""

import base64
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode, urlsplit

import anyio
from requests import PreparedRequest
from requests import Response as RequestsResponse
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from typedrest import WELL_KNOWN_PATH, ASGIAdapter, AwsApiGatewayAdapter, Request, Response, Router
from typedrest.models import MultiValueHeaders
from .dsl import HttpRequest, HttpResponse


def _decode_body(body: Optional[str], content_type: Optional[str]):
    """Parse JSON bodies; keep anything else as text."""
    if body and content_type and "application/json" in content_type:
        try:
            return json.loads(body)
        except (json.JSONDecodeError, TypeError):
            pass
    return body or None


class DriverInterface(ABC):
    """Abstract interface for all drivers."""

    @abstractmethod
    def execute(self, request: HttpRequest) -> HttpResponse:
        """Execute an HTTP request and return the response."""
        pass


class DirectDriver(DriverInterface):
    """
    Driver that dispatches requests straight into the Router.

    This is the most direct way to test the library without any intermediate layers.
    """

    def __init__(self, router: Router):
        self.router = router

    def execute(self, request: HttpRequest) -> HttpResponse:
        tr_request = Request(
            method=request.method,
            path=request.path,
            headers=MultiValueHeaders(request.headers),
            query_params=dict(request.query_params),
            body=request.encoded_body(),
        )
        response = self.router.dispatch_sync(tr_request)

        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers.items()),
            body=_decode_body(response.body, response.content_type),
            content_type=response.content_type,
        )


class AsgiDriver(DriverInterface):
    """
    Driver that runs requests through the ASGI adapter in-process.

    The request body is delivered in two chunks so the adapter has to
    reassemble it.
    """

    def __init__(self, router: Router, **adapter_kwargs):
        self.adapter = ASGIAdapter(router, **adapter_kwargs)

    def build_scope(self, request: HttpRequest) -> Dict[str, Any]:
        headers = [[name.lower().encode("latin-1"), value.encode("latin-1")]
                   for name, value in request.headers.items()]
        headers.append([b"host", b"testserver"])
        return {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": request.method.upper(),
            "scheme": "http",
            "path": request.path,
            "raw_path": quote(request.path, safe="/%:@").encode("latin-1"),
            "query_string": urlencode(request.query_params).encode("utf-8"),
            "headers": headers,
            "server": ("testserver", 80),
        }

    def call(self, scope: Dict[str, Any], body: bytes = b"") -> List[Dict[str, Any]]:
        """Run one ASGI call and return the messages the app sent."""
        half = len(body) // 2
        incoming = [
            {"type": "http.request", "body": body[:half], "more_body": True},
            {"type": "http.request", "body": body[half:], "more_body": False},
        ]
        sent: List[Dict[str, Any]] = []

        async def receive():
            if incoming:
                return incoming.pop(0)
            return {"type": "http.disconnect"}

        async def send(message):
            sent.append(message)

        async def run():
            await self.adapter(scope, receive, send)

        anyio.run(run)
        return sent

    def execute(self, request: HttpRequest) -> HttpResponse:
        body = (request.encoded_body() or "").encode("utf-8")
        sent = self.call(self.build_scope(request), body)

        start = next(m for m in sent if m["type"] == "http.response.start")
        payload = b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body")
        headers = {name.decode("latin-1"): value.decode("latin-1") for name, value in start["headers"]}
        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), None)

        return HttpResponse(
            status_code=start["status"],
            headers=headers,
            body=_decode_body(payload.decode("utf-8"), content_type),
            content_type=content_type,
        )


class AwsLambdaDriver(DriverInterface):
    """
    Driver that executes requests through AWS Lambda/API Gateway simulation.

    This tests the library as it would work when deployed to AWS Lambda.
    ``payload_version`` selects REST API (1.0) or HTTP API (2.0) events.
    """

    def __init__(self, router: Router, payload_version: str = "1.0", base64_bodies: bool = False):
        self.adapter = AwsApiGatewayAdapter(router)
        self.payload_version = payload_version
        self.base64_bodies = base64_bodies
        self.last_event = None

    def _encode(self, request: HttpRequest):
        body = request.encoded_body()
        if body is not None and self.base64_bodies:
            return base64.b64encode(body.encode("utf-8")).decode("ascii"), True
        return body, False

    def _convert_to_v1_event(self, request: HttpRequest) -> Dict[str, Any]:
        body, is_base64_encoded = self._encode(request)
        return {
            "httpMethod": request.method.upper(),
            "path": request.path,
            "headers": dict(request.headers),
            "multiValueHeaders": {name: [value] for name, value in request.headers.items()},
            "queryStringParameters": dict(request.query_params) or None,
            "multiValueQueryStringParameters": {k: [v] for k, v in request.query_params.items()} or None,
            "pathParameters": None,
            "body": body,
            "isBase64Encoded": is_base64_encoded,
            "requestContext": {
                "requestId": "test-request-id",
                "stage": "test",
                "httpMethod": request.method.upper(),
                "protocol": "HTTP/1.1",
            },
        }

    def _convert_to_v2_event(self, request: HttpRequest) -> Dict[str, Any]:
        body, is_base64_encoded = self._encode(request)
        headers = {name.lower(): value for name, value in request.headers.items() if name.lower() != "cookie"}
        cookie = next((v for k, v in request.headers.items() if k.lower() == "cookie"), None)
        event = {
            "version": "2.0",
            "routeKey": "$default",
            "rawPath": request.path,
            "rawQueryString": urlencode(request.query_params),
            "headers": headers,
            "requestContext": {
                "http": {
                    "method": request.method.upper(),
                    "path": request.path,
                    "protocol": "HTTP/1.1",
                },
                "requestId": "test-request-id",
                "stage": "$default",
            },
            "body": body,
            "isBase64Encoded": is_base64_encoded,
        }
        if cookie:
            event["cookies"] = [c.strip() for c in cookie.split(";")]
        return event

    def execute(self, request: HttpRequest) -> HttpResponse:
        if self.payload_version == "2.0":
            event = self._convert_to_v2_event(request)
        else:
            event = self._convert_to_v1_event(request)
        self.last_event = event
        return self.convert_from_aws_response(self.adapter.handle_event(event, None))

    def execute_with_custom_event(self, event: Dict[str, Any]) -> HttpResponse:
        """Execute with a hand-written API Gateway event."""
        return self.convert_from_aws_response(self.adapter.handle_event(event, None))

    @staticmethod
    def convert_from_aws_response(aws_response: Dict[str, Any]) -> HttpResponse:
        headers = dict(aws_response.get("headers") or {})
        if aws_response.get("cookies"):
            headers["Set-Cookie"] = aws_response["cookies"][-1]
        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), None)
        return HttpResponse(
            status_code=aws_response.get("statusCode", 500),
            headers=headers,
            body=_decode_body(aws_response.get("body"), content_type),
            content_type=content_type,
        )


class RouterTransport(BaseAdapter):
    """
    requests transport adapter that dispatches into a Router in-process.

    Mount it on a ``requests.Session`` to exercise the client without a
    running server::

        session = requests.Session()
        session.mount("http://testserver", RouterTransport(router, openapi=metadata))
    """

    def __init__(self, router: Router, openapi: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.router = router
        self.openapi = openapi
        self.sent: List[PreparedRequest] = []

    def send(self, request: PreparedRequest, **kwargs) -> RequestsResponse:
        self.sent.append(request)
        if self.openapi is not None and urlsplit(request.url).path == WELL_KNOWN_PATH:
            tr_response = Response(200, json.dumps(self.router.openapi(self.openapi)), content_type="application/json")
        else:
            tr_request = Request.from_url(request.method, request.url, dict(request.headers), request.body)
            tr_response = self.router.dispatch_sync(tr_request)

        response = RequestsResponse()
        response.status_code = tr_response.status_code
        response.headers = CaseInsensitiveDict(
            {name: ", ".join(values) for name, values in tr_response.headers.to_multi_dict().items()}
        )
        response._content = (tr_response.body or "").encode("utf-8")
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass
