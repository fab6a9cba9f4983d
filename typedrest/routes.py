"""Route descriptors.

A ``Route`` binds a method, a path pattern, input schemas, a handler, the
response schemas per status and documentation into one immutable unit.
"""

import dataclasses
import functools
import inspect
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, FrozenSet, Mapping, Optional, Tuple, Union

import anyio

from .exceptions import MissingParamSchemaError, RegistrationError
from .models import HTTPMethod, Request, Response
from .paths import PathPattern, compile_path, normalize_path
from .schemas import Schema, as_schema, schema_fields

logger = logging.getLogger(__name__)

# Arguments a handler may ask for by name.
HANDLER_ARGUMENTS = ("request", "params", "body")


def _accepted_arguments(handler: Callable, method: str, path: str) -> FrozenSet[str]:
    """Work out which of ``HANDLER_ARGUMENTS`` the handler's signature names."""
    signature = inspect.signature(handler)
    accepted = set()
    for name, param in signature.parameters.items():
        if param.kind is inspect.Parameter.VAR_KEYWORD:
            return frozenset(HANDLER_ARGUMENTS)
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            continue
        if name in HANDLER_ARGUMENTS and param.kind is not inspect.Parameter.POSITIONAL_ONLY:
            accepted.add(name)
        elif param.default is inspect.Parameter.empty:
            raise RegistrationError(
                f"Handler {getattr(handler, '__name__', handler)!r} for {method} {path} "
                f"requires argument {name!r}; handlers may only take {', '.join(HANDLER_ARGUMENTS)}"
            )
    return frozenset(accepted)


@dataclass(frozen=True, eq=False)
class Route:
    """Immutable route descriptor.

    Example::

        Route(
            "PUT", "/todos/:id", update_todo,
            params=TodoId,
            body=TodoPatch,
            responses={200: Todo, 404: PydanticSchema(str, "Not Found")},
            summary="Update TODO",
        )

    Raises:
        InvalidPatternError: If the path does not compile.
        MissingParamSchemaError: If a path parameter has no field in ``params``.
        RegistrationError: If the handler requires arguments it cannot receive.
    """

    method: HTTPMethod
    path: str
    handler: Callable[..., Any]
    params: Optional[Schema] = None
    body: Optional[Schema] = None
    responses: Mapping[int, Schema] = field(default_factory=dict)
    summary: Optional[str] = None
    description: Optional[str] = None
    name: Optional[str] = None
    tags: Tuple[str, ...] = ()
    pattern: PathPattern = field(init=False, repr=False, compare=False)
    handler_arguments: FrozenSet[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        method = self.method if isinstance(self.method, HTTPMethod) else HTTPMethod(str(self.method).upper())
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "params", as_schema(self.params))
        object.__setattr__(self, "body", as_schema(self.body))
        object.__setattr__(
            self,
            "responses",
            MappingProxyType({int(status): as_schema(schema) for status, schema in self.responses.items()}),
        )
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "pattern", compile_path(self.path))
        object.__setattr__(
            self, "handler_arguments", _accepted_arguments(self.handler, method.value, self.path)
        )

        declared: Tuple[str, ...] = ()
        if self.params is not None:
            declared, _ = schema_fields(self.params)
        missing = [name for name in self.pattern.param_names if name not in declared]
        if missing:
            raise MissingParamSchemaError(method.value, self.path, missing)

    @property
    def operation_id(self) -> str:
        return self.name or getattr(self.handler, "__name__", f"{self.method.value.lower()}_{self.path}")

    @property
    def doc(self) -> Optional[str]:
        """The route description, falling back to the handler docstring."""
        return self.description or inspect.getdoc(self.handler)

    def with_prefix(self, prefix: str) -> "Route":
        """Return a copy of this route mounted under *prefix*."""
        return dataclasses.replace(self, path=normalize_path(prefix, self.path))

    async def invoke(self, request: Request, params: Any, body: Any) -> Response:
        """Call the handler with the typed inputs it asks for.

        Plain functions run in a worker thread so they cannot stall the event
        loop. Exceptions raised by the handler propagate unchanged.
        """
        available = {"request": request, "params": params, "body": body}
        kwargs = {name: available[name] for name in self.handler_arguments}

        if inspect.iscoroutinefunction(self.handler):
            result = await self.handler(**kwargs)
        else:
            result = await anyio.to_thread.run_sync(functools.partial(self.handler, **kwargs))
            if inspect.isawaitable(result):
                result = await result

        if not isinstance(result, Response):
            raise TypeError(
                f"Handler for {self.method.value} {self.path} returned {type(result).__name__}; "
                f"expected a Response"
            )
        return result


def route(
    method: Union[HTTPMethod, str],
    path: str,
    *,
    params: Any = None,
    body: Any = None,
    responses: Optional[Mapping[int, Any]] = None,
    summary: Optional[str] = None,
    description: Optional[str] = None,
    name: Optional[str] = None,
    tags: Tuple[str, ...] = (),
) -> Callable[[Callable[..., Any]], Route]:
    """Decorator turning a handler function into a ``Route``.

    Example::

        @route("GET", "/todos", responses={200: List[Todo]})
        async def list_todos(request):
            ...
    """
    def decorator(func: Callable[..., Any]) -> Route:
        return Route(
            method=method,  # type: ignore[arg-type]
            path=path,
            handler=func,
            params=params,
            body=body,
            responses=responses or {},
            summary=summary,
            description=description,
            name=name,
            tags=tags,
        )

    return decorator
