"""Path pattern compilation and matching.

A route path such as ``/todos/:id`` (or ``/todos/{id}``) compiles into an
immutable sequence of literal and parameter segments::

    compile_path("/todos/:id/tags")
    # PathPattern(segments=(Literal('todos'), Param('id'), Literal('tags')))
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote, unquote

from .exceptions import InvalidPatternError, MissingPathParameterError


@dataclass(frozen=True)
class Literal:
    """A segment that must match the request token exactly."""

    text: str


@dataclass(frozen=True)
class Param:
    """A segment that captures any non-empty request token under ``name``."""

    name: str


Segment = Union[Literal, Param]


def split_path(path: str) -> Tuple[str, ...]:
    """Split a path into raw tokens, ignoring one leading and one trailing slash.

    Interior empty tokens are kept so that ``/a//b`` never matches ``/a/:x/b``.
    """
    if path.startswith("/"):
        path = path[1:]
    if path.endswith("/"):
        path = path[:-1]
    if not path:
        return ()
    return tuple(path.split("/"))


def _parse_param_name(part: str) -> Optional[str]:
    if part.startswith(":"):
        return part[1:]
    if part.startswith("{") and part.endswith("}"):
        return part[1:-1]
    return None


@dataclass(frozen=True)
class PathPattern:
    """Compiled route path."""

    source: str
    segments: Tuple[Segment, ...]

    @property
    def param_names(self) -> Tuple[str, ...]:
        """Parameter names in path order."""
        return tuple(seg.name for seg in self.segments if isinstance(seg, Param))

    @property
    def shape(self) -> Tuple[Optional[str], ...]:
        """The pattern with parameter names erased.

        Two patterns with the same shape are indistinguishable to the trie.
        """
        return tuple(seg.text if isinstance(seg, Literal) else None for seg in self.segments)

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """Match a request path, returning the decoded captures or None."""
        tokens = split_path(path)
        if len(tokens) != len(self.segments):
            return None

        captured: Dict[str, str] = {}
        for segment, token in zip(self.segments, tokens):
            if not token:
                return None
            value = unquote(token)
            if value == "/":
                return None
            if isinstance(segment, Param):
                captured[segment.name] = value
            elif segment.text != value:
                return None
        return captured

    def to_openapi(self) -> str:
        """Render in the brace notation OpenAPI expects: ``/todos/{id}``."""
        parts = [
            f"{{{seg.name}}}" if isinstance(seg, Param) else seg.text
            for seg in self.segments
        ]
        return "/" + "/".join(parts)

    def format(self, values: Mapping[str, object]) -> str:
        """Substitute parameter values into the pattern, URL-encoding each one."""
        parts = []
        for seg in self.segments:
            if isinstance(seg, Param):
                if seg.name not in values or values[seg.name] is None:
                    raise MissingPathParameterError(seg.name)
                parts.append(quote(str(values[seg.name]), safe=""))
            else:
                parts.append(quote(seg.text, safe=""))
        return "/" + "/".join(parts)

    def __str__(self) -> str:
        return self.source


def compile_path(pattern: str) -> PathPattern:
    """Compile a route path string into a ``PathPattern``.

    Raises:
        InvalidPatternError: If the pattern has an empty interior segment, a
            parameter without a valid identifier name, or a repeated
            parameter name.
    """
    if not isinstance(pattern, str):
        raise InvalidPatternError(repr(pattern), "pattern must be a string")

    segments = []
    seen = set()
    for part in split_path(pattern.strip()):
        if not part:
            raise InvalidPatternError(pattern, "empty path segment")
        name = _parse_param_name(part)
        if name is None:
            segments.append(Literal(unquote(part)))
            continue
        if not name.isidentifier():
            raise InvalidPatternError(pattern, f"invalid parameter name {name!r}")
        if name in seen:
            raise InvalidPatternError(pattern, f"parameter {name!r} appears more than once")
        seen.add(name)
        segments.append(Param(name))

    return PathPattern(source=pattern, segments=tuple(segments))


def normalize_path(prefix: str, path: str) -> str:
    """Join a mount prefix and a route path without doubling slashes.

    Examples:
        normalize_path("/", "/users") -> "/users"
        normalize_path("/api", "users") -> "/api/users"
        normalize_path("/api/", "/users") -> "/api/users"
    """
    if not prefix.startswith('/'):
        prefix = '/' + prefix

    if prefix != '/' and prefix.endswith('/'):
        prefix = prefix.rstrip('/')

    if not path.startswith('/'):
        path = '/' + path

    if prefix == '/':
        return path

    return prefix + path
