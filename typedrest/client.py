"""HTTP client constrained to the routes a server declares.

The client loads the server's OpenAPI document and refuses to issue any
request whose method and path pattern it does not list, so a caller cannot
reach an undeclared route through it.
"""

import logging
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import requests

from .exceptions import MarkerHeaderMissingError, UndeclaredRouteError
from .models import MARKER_HEADER, MARKER_VALUE, HTTPMethod
from .openapi import WELL_KNOWN_PATH
from .paths import PathPattern, compile_path

logger = logging.getLogger(__name__)

_OPERATION_KEYS = {method.value.lower() for method in HTTPMethod}


def declared_routes(manifest: Mapping[str, Any]) -> FrozenSet[Tuple[str, str]]:
    """Collect the ``(METHOD, /openapi/{path})`` pairs an OpenAPI document declares."""
    declared = set()
    for path, operations in (manifest.get("paths") or {}).items():
        for key in operations:
            if key in _OPERATION_KEYS:
                declared.add((key.upper(), compile_path(path).to_openapi()))
    return frozenset(declared)


class RestClient:
    """Issue requests against the routes declared in a manifest.

    Example:
        ```python
        client = RestClient.from_server("http://localhost:8000", strict=True)
        created = client.post("/todos", body={"title": "Buy milk"}).json()
        client.delete("/todos/:id", params={"id": created["id"]})
        ```

    Args:
        root: Base URL of the server, e.g. ``http://localhost:8000``.
        manifest: The server's OpenAPI document.
        strict: Require the marker header on every response.
        session: ``requests.Session`` to send with; one is created if omitted.
        headers: Headers sent with every request.
    """

    def __init__(self,
                 root: str,
                 manifest: Mapping[str, Any],
                 *,
                 strict: bool = False,
                 session: Optional[requests.Session] = None,
                 headers: Optional[Mapping[str, str]] = None):
        self.root = root.rstrip("/")
        self.strict = strict
        self.session = session if session is not None else requests.Session()
        self.headers = dict(headers or {})
        self.routes = declared_routes(manifest)
        self._patterns: Dict[str, PathPattern] = {}

    @classmethod
    def from_server(cls, root: str, **kwargs: Any) -> "RestClient":
        """Create a client from the manifest the server publishes."""
        session = kwargs.get("session") or requests.Session()
        kwargs["session"] = session
        url = root.rstrip("/") + WELL_KNOWN_PATH
        response = session.get(url)
        response.raise_for_status()
        return cls(root, response.json(), **kwargs)

    def _pattern(self, path: str) -> PathPattern:
        pattern = self._patterns.get(path)
        if pattern is None:
            pattern = self._patterns[path] = compile_path(path)
        return pattern

    def request(self,
                method: str,
                path: str,
                params: Optional[Mapping[str, Any]] = None,
                body: Any = None) -> requests.Response:
        """Send a request to a declared route.

        Path parameters are taken from ``params`` by name; the remaining
        entries are sent as the query string.

        Raises:
            UndeclaredRouteError: If the manifest does not declare the route.
            MissingPathParameterError: If a path parameter has no value.
            MarkerHeaderMissingError: In strict mode, if the response lacks
                the marker header.
        """
        method = method.upper()
        pattern = self._pattern(path)
        if (method, pattern.to_openapi()) not in self.routes:
            raise UndeclaredRouteError(method, path)

        params = dict(params or {})
        url = self.root + pattern.format(params)
        query = {name: value for name, value in params.items() if name not in pattern.param_names}

        headers = {MARKER_HEADER: MARKER_VALUE, **self.headers}
        kwargs: Dict[str, Any] = {"headers": headers}
        if query:
            kwargs["params"] = query
        if body is not None:
            kwargs["json"] = body

        logger.debug(f"{method} {url}")
        response = self.session.request(method, url, **kwargs)

        if self.strict and response.headers.get(MARKER_HEADER) != MARKER_VALUE:
            raise MarkerHeaderMissingError(
                f"{method} {url} returned {response.status_code} without the {MARKER_HEADER} header"
            )
        return response

    def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> requests.Response:
        return self.request("GET", path, params)

    def delete(self, path: str, params: Optional[Mapping[str, Any]] = None) -> requests.Response:
        return self.request("DELETE", path, params)

    def post(self, path: str, params: Optional[Mapping[str, Any]] = None, body: Any = None) -> requests.Response:
        return self.request("POST", path, params, body)

    def put(self, path: str, params: Optional[Mapping[str, Any]] = None, body: Any = None) -> requests.Response:
        return self.request("PUT", path, params, body)

    def patch(self, path: str, params: Optional[Mapping[str, Any]] = None, body: Any = None) -> requests.Response:
        return self.request("PATCH", path, params, body)
