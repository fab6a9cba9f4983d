"""Trie-based router and request dispatcher.

Routes are registered during startup and indexed by path segment into a
trie. The first call to ``resolve`` or ``dispatch`` freezes the router;
after that the trie is read-only and may be shared by any number of
concurrent requests without locking.
"""

import inspect
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union
from urllib.parse import unquote

import anyio

from .error_models import ErrorResponse, ValidationFailure
from .exceptions import DuplicateRouteError, ResponseContractError, RouterFrozenError
from .models import (
    MARKER_HEADER,
    MARKER_VALUE,
    HTTPMethod,
    MultiValueHeaders,
    Outcome,
    Request,
    Response,
)
from .openapi import generate_openapi, openapi_json
from .paths import Param, split_path
from .routes import Route
from .schemas import ParseResult, Schema

logger = logging.getLogger(__name__)


def _env_flag(name: str) -> Optional[bool]:
    """Read a boolean environment variable; None when unset or unrecognised."""
    value = os.environ.get(name, '').lower()
    if value in ('true', '1', 'yes', 'on'):
        return True
    if value in ('false', '0', 'no', 'off'):
        return False
    return None


async def run_parse(schema: Schema, value: Any) -> ParseResult:
    """Call ``schema.parse`` and await the result if the schema is asynchronous."""
    result = schema.parse(value)
    if inspect.isawaitable(result):
        result = await result
    return result


class RouteNode:
    """A node in the route trie.

    Each node represents a path depth and has:
    - literal_children: exact (URL-decoded) segment text -> child node
    - param_child: the single child for a parameter segment at this depth
    - methods: HTTP method -> Route terminating at this node
    """

    __slots__ = ("literal_children", "param_child", "methods")

    def __init__(self):
        self.literal_children: Dict[str, "RouteNode"] = {}
        self.param_child: Optional["RouteNode"] = None
        self.methods: Dict[HTTPMethod, Route] = {}

    def insert(self, route: Route) -> None:
        """Insert a route, creating nodes along its pattern."""
        node = self
        for segment in route.pattern.segments:
            if isinstance(segment, Param):
                if node.param_child is None:
                    node.param_child = RouteNode()
                node = node.param_child
            else:
                node = node.literal_children.setdefault(segment.text, RouteNode())

        existing = node.methods.get(route.method)
        if existing is not None:
            raise DuplicateRouteError(route.method.value, route.path, existing.path)
        node.methods[route.method] = route

    def walk(self, tokens: Tuple[str, ...], index: int = 0,
             captured: Tuple[str, ...] = ()) -> Iterator[Tuple["RouteNode", Tuple[str, ...]]]:
        """Yield every terminal node matching *tokens*, most specific first.

        A literal child is tried before the parameter child at every depth,
        so a literal deeper under a parameter branch is still reachable.
        """
        if index == len(tokens):
            if self.methods:
                yield self, captured
            return

        token = tokens[index]
        # An encoded "/" (%2F) decodes to a bare slash, which is not a segment.
        if not token or token == "/":
            return

        child = self.literal_children.get(token)
        if child is not None:
            yield from child.walk(tokens, index + 1, captured)

        if self.param_child is not None:
            yield from self.param_child.walk(tokens, index + 1, captured + (token,))


@dataclass(frozen=True)
class Resolution:
    """Result of resolving a method and path against the trie."""

    outcome: Outcome
    route: Optional[Route] = None
    path_params: Dict[str, str] = field(default_factory=dict)
    allowed_methods: Tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return self.outcome is Outcome.MATCHED


def not_found_response() -> Response:
    return Response(
        404, "Not Found", content_type="text/plain; charset=utf-8", outcome=Outcome.NOT_FOUND
    )


def method_not_allowed_response(allowed: Iterable[str]) -> Response:
    headers = MultiValueHeaders({"Allow": ", ".join(allowed)})
    return Response(
        405,
        "Method Not Allowed",
        headers=headers,
        content_type="text/plain; charset=utf-8",
        outcome=Outcome.METHOD_NOT_ALLOWED,
    )


def validation_error_response(failures: List[ValidationFailure]) -> Response:
    headers = MultiValueHeaders({MARKER_HEADER: MARKER_VALUE})
    return Response(
        400,
        ErrorResponse.from_failures(failures).model_dump_json(),
        headers=headers,
        content_type="application/json",
    )


class Router:
    """Router class holding route descriptors and dispatching requests.

    Routes can be passed up front, registered with decorators, or pulled in
    from another router with ``mount``::

        router = Router([create_todo, list_todos])

        @router.get("/todos/:id", params=TodoId, responses={200: Todo})
        async def get_todo(params):
            ...

        response = await router.dispatch(Request.from_url("GET", "/todos/1"))

    Args:
        routes: Route descriptors to register, in order.
        validate_responses: Check every handler response against the route's
            declared statuses and schemas. Defaults to the
            ``TYPEDREST_VALIDATE_RESPONSES`` environment variable, else off.
    """

    def __init__(self, routes: Iterable[Route] = (), *, validate_responses: Optional[bool] = None):
        self._routes: List[Route] = []
        self._route_tree = RouteNode()
        self._frozen = False

        if validate_responses is None:
            validate_responses = _env_flag('TYPEDREST_VALIDATE_RESPONSES') or False
        self.validate_responses = validate_responses

        for route in routes:
            self.add(route)

    @property
    def routes(self) -> List[Route]:
        """Registered routes in registration order."""
        return list(self._routes)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """End the registration phase. No more routes can be added."""
        if not self._frozen:
            logger.debug(f"Router frozen with {len(self._routes)} route(s)")
        self._frozen = True

    def add(self, route: Route) -> Route:
        """Register a route descriptor.

        Raises:
            RouterFrozenError: If dispatch has already started.
            DuplicateRouteError: If the method and path are already taken.
        """
        if self._frozen:
            raise RouterFrozenError(
                f"Cannot add {route.method.value} {route.path}: routes cannot be added after dispatch has started"
            )
        self._route_tree.insert(route)
        self._routes.append(route)
        logger.debug(f"Registered route {route.method.value} {route.path}")
        return route

    def mount(self, prefix: str, router: "Router") -> None:
        """Register every route of another router under a path prefix.

        Example:
            todos = Router()
            todos.get("/:id", params=TodoId, responses={200: Todo})(get_todo)

            api = Router()
            api.mount("/todos", todos)
            # This creates the route GET /todos/:id
        """
        for route in router.routes:
            self.add(route.with_prefix(prefix))

    def route(self, method: Union[HTTPMethod, str], path: str, **options: Any) -> Callable:
        """Decorator registering a handler; see ``Route`` for the options."""
        def decorator(func: Callable):
            self.add(Route(method=method, path=path, handler=func, **options))  # type: ignore[arg-type]
            return func

        return decorator

    def get(self, path: str, **options: Any):
        """Decorator to register a GET route handler."""
        return self.route(HTTPMethod.GET, path, **options)

    def post(self, path: str, **options: Any):
        """Decorator to register a POST route handler."""
        return self.route(HTTPMethod.POST, path, **options)

    def put(self, path: str, **options: Any):
        """Decorator to register a PUT route handler."""
        return self.route(HTTPMethod.PUT, path, **options)

    def delete(self, path: str, **options: Any):
        """Decorator to register a DELETE route handler."""
        return self.route(HTTPMethod.DELETE, path, **options)

    def patch(self, path: str, **options: Any):
        """Decorator to register a PATCH route handler."""
        return self.route(HTTPMethod.PATCH, path, **options)

    def resolve(self, method: Union[HTTPMethod, str], path: str) -> Resolution:
        """Resolve a method and path to a route, or a NOT_FOUND/METHOD_NOT_ALLOWED outcome.

        The most specific node matching the whole path decides the outcome.
        Its method table alone determines MATCHED or METHOD_NOT_ALLOWED; a
        less specific node is never consulted for a method the literal route
        lacks.
        """
        self.freeze()

        tokens = tuple(unquote(token) for token in split_path(path))
        terminal = next(self._route_tree.walk(tokens), None)
        if terminal is None:
            return Resolution(Outcome.NOT_FOUND)

        node, captured = terminal
        method_name = method.value if isinstance(method, HTTPMethod) else method.upper()
        route = next((r for m, r in node.methods.items() if m.value == method_name), None)
        if route is None:
            allowed = tuple(m.value for m in node.methods)
            return Resolution(Outcome.METHOD_NOT_ALLOWED, allowed_methods=allowed)

        path_params = dict(zip(route.pattern.param_names, captured))
        return Resolution(Outcome.MATCHED, route=route, path_params=path_params)

    async def dispatch(self, request: Request) -> Response:
        """Resolve, validate and invoke the handler for *request*.

        Routing misses and invalid input become 404, 405 and 400 responses.
        Exceptions raised by handlers are not caught.
        """
        resolution = self.resolve(request.method, request.path)

        if resolution.outcome is Outcome.NOT_FOUND:
            logger.debug(f"No route matches {request.method} {request.path}")
            return not_found_response()
        if resolution.outcome is Outcome.METHOD_NOT_ALLOWED:
            logger.debug(f"Method {request.method} not allowed for {request.path}")
            return method_not_allowed_response(resolution.allowed_methods)

        route = resolution.route
        if route is None:
            raise RuntimeError(f"Resolution for {request.method} {request.path} matched without a route")
        request.path_params = dict(resolution.path_params)

        failures: List[ValidationFailure] = []
        params = None
        body = None

        if route.params is not None:
            # Path parameters are structural and win over same-named query keys.
            merged = {**request.query_params, **resolution.path_params}
            result = await run_parse(route.params, merged)
            if result.ok:
                params = result.value
            else:
                failures.extend(failure.prefixed("params") for failure in result.failures)

        if route.body is not None:
            try:
                payload = request.json()
            except ValueError as e:
                failures.append(ValidationFailure(
                    path=("body",),
                    message=f"Invalid JSON body: {e}",
                    expected_type="json_invalid",
                ))
            else:
                result = await run_parse(route.body, payload)
                if result.ok:
                    body = result.value
                else:
                    failures.extend(failure.prefixed("body") for failure in result.failures)

        if failures:
            logger.info(
                f"Rejected {request.method} {request.path}: {len(failures)} validation failure(s)"
            )
            return validation_error_response(failures)

        response = await route.invoke(request, params, body)

        if self.validate_responses:
            await self._check_response(route, response)
        return response

    def dispatch_sync(self, request: Request) -> Response:
        """Synchronous wrapper for ``dispatch()`` using ``anyio.run()``."""
        return anyio.run(self.dispatch, request)

    async def _check_response(self, route: Route, response: Response) -> None:
        """Raise ResponseContractError if the response breaks the route's declaration."""
        method = route.method.value
        schema = route.responses.get(response.status_code)
        if schema is None:
            declared = ", ".join(str(status) for status in route.responses) or "none"
            logger.error(f"{method} {route.path} returned undeclared status {response.status_code}")
            raise ResponseContractError(
                method, route.path, response.status_code, f"status is not declared (declared: {declared})"
            )

        try:
            payload = json.loads(response.body) if response.body else None
        except ValueError as e:
            raise ResponseContractError(method, route.path, response.status_code, f"body is not JSON: {e}") from e

        result = await run_parse(schema, payload)
        if not result.ok:
            messages = "; ".join(
                f"{'.'.join(str(p) for p in failure.path) or '<root>'}: {failure.message}"
                for failure in result.failures
            )
            logger.error(f"{method} {route.path} returned a body that fails its schema: {messages}")
            raise ResponseContractError(method, route.path, response.status_code, messages)

    def openapi(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Generate the OpenAPI document describing this router's routes."""
        return generate_openapi(self._routes, metadata)

    def openapi_json(self, metadata: Dict[str, Any]) -> str:
        """Generate the OpenAPI document as a JSON string."""
        return openapi_json(self._routes, metadata)
