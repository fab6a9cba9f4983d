"""
Core data models for the typedrest framework.

These are the canonical, transport-independent request and response
representations. Adapters convert a host server's native objects into a
``Request`` and convert the ``Response`` produced by the dispatcher back.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlsplit

import pydantic_core

# Set up logger for this module
logger = logging.getLogger(__name__)

MARKER_HEADER = "X-TypedRest"
MARKER_VALUE = "1"

HeadersInit = Union["MultiValueHeaders", Dict[str, Any], List[Tuple[str, str]], None]


class HTTPMethod(Enum):
    """Enumeration of supported HTTP methods."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class Outcome(Enum):
    """How the dispatcher resolved a request."""

    MATCHED = "matched"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"


class MultiValueHeaders:
    """
    Multi-value, case-insensitive headers container.

    HTTP headers are case-insensitive per RFC 7230, and the same header can
    appear multiple times (``Set-Cookie`` being the usual example)::

        headers = MultiValueHeaders()
        headers.add('Set-Cookie', 'session=abc')
        headers.add('Set-Cookie', 'user=123')
        headers.get('set-cookie')      # 'session=abc'
        headers.get_all('set-cookie')  # ['session=abc', 'user=123']
    """

    def __init__(self, data: HeadersInit = None):
        # lowercase name -> [(original name, value), ...]
        self._headers: Dict[str, List[Tuple[str, str]]] = {}

        if data is None:
            return
        if isinstance(data, MultiValueHeaders):
            self._headers = {k: list(v) for k, v in data._headers.items()}
        elif isinstance(data, dict):
            for key, value in data.items():
                if value is None:
                    continue
                if isinstance(value, (list, tuple)):
                    for v in value:
                        self.add(key, v)
                else:
                    self.add(key, value)
        else:
            for key, value in data:
                self.add(key, value)

    def add(self, name: str, value: str) -> None:
        """Add a header value, keeping any existing values for the same name."""
        self._headers.setdefault(name.lower(), []).append((name, str(value)))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first value for a header name."""
        values = self._headers.get(name.lower())
        if values:
            return values[0][1]
        return default

    def get_all(self, name: str) -> List[str]:
        """Get all values for a header name."""
        return [value for _, value in self._headers.get(name.lower(), [])]

    def set(self, name: str, value: str) -> None:
        """Set a header to a single value, replacing any existing values."""
        self._headers[name.lower()] = [(name, str(value))]

    def setdefault(self, name: str, value: str) -> str:
        """Set a header only if it is not present; return its first value."""
        if name not in self:
            self.set(name, value)
        return self[name]

    def __setitem__(self, name: str, value: str) -> None:
        self.set(name, value)

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return name.lower() in self._headers

    def __delitem__(self, name: str) -> None:
        try:
            del self._headers[name.lower()]
        except KeyError:
            raise KeyError(name) from None

    def __iter__(self):
        for values in self._headers.values():
            if values:
                yield values[0][0]

    def __len__(self) -> int:
        return len(self._headers)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MultiValueHeaders):
            return sorted(self.items_all()) == sorted(other.items_all())
        if isinstance(other, dict):
            return self == MultiValueHeaders(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"MultiValueHeaders({self.items_all()!r})"

    def keys(self):
        return list(self)

    def items(self):
        """Return (name, first_value) pairs."""
        return [(values[0][0], values[0][1]) for values in self._headers.values() if values]

    def items_all(self) -> List[Tuple[str, str]]:
        """Return all (name, value) pairs including duplicates."""
        result = []
        for values in self._headers.values():
            result.extend(values)
        return result

    def to_multi_dict(self) -> Dict[str, List[str]]:
        """Return ``{name: [values...]}`` using the first-seen casing of each name."""
        return {values[0][0]: [v for _, v in values] for values in self._headers.values() if values}

    def copy(self) -> "MultiValueHeaders":
        return MultiValueHeaders(self)


@dataclass
class Request:
    """Canonical HTTP request consumed by the dispatcher."""

    method: str
    path: str
    headers: MultiValueHeaders = field(default_factory=MultiValueHeaders)
    query_params: Dict[str, str] = field(default_factory=dict)
    body: Optional[Union[str, bytes]] = None
    path_params: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.method, HTTPMethod):
            self.method = self.method.value
        self.method = self.method.upper()
        if not isinstance(self.headers, MultiValueHeaders):
            self.headers = MultiValueHeaders(self.headers)
        if self.query_params is None:
            self.query_params = {}
        if self.path_params is None:
            self.path_params = {}

    @classmethod
    def from_url(
        cls,
        method: Union[str, HTTPMethod],
        url: str,
        headers: HeadersInit = None,
        body: Optional[Union[str, bytes]] = None,
    ) -> "Request":
        """Build a request from an absolute or relative URL.

        Repeated query keys keep their last value.
        """
        parts = urlsplit(url)
        query_params = dict(parse_qsl(parts.query, keep_blank_values=True))
        return cls(
            method=method.value if isinstance(method, HTTPMethod) else method,
            path=parts.path or "/",
            headers=MultiValueHeaders(headers),
            query_params=query_params,
            body=body,
        )

    def text(self) -> str:
        """Return the body decoded as UTF-8 text ("" when there is no body)."""
        if self.body is None:
            return ""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            ValueError: If the body is empty or not valid JSON.
        """
        text = self.text()
        if not text.strip():
            raise ValueError("Request body is empty")
        return json.loads(text)

    def get_content_type(self) -> Optional[str]:
        return self.headers.get("Content-Type")


@dataclass
class Response:
    """Canonical HTTP response produced by the dispatcher."""

    status_code: int
    body: Optional[str] = None
    headers: MultiValueHeaders = field(default_factory=MultiValueHeaders)
    content_type: Optional[str] = None
    outcome: Outcome = Outcome.MATCHED

    def __post_init__(self):
        if not isinstance(self.headers, MultiValueHeaders):
            self.headers = MultiValueHeaders(self.headers)

        if self.content_type:
            self.headers["Content-Type"] = self.content_type
        else:
            self.content_type = self.headers.get("Content-Type")

    @property
    def is_marked(self) -> bool:
        """Whether the response carries the typedrest marker header."""
        return self.headers.get(MARKER_HEADER) == MARKER_VALUE

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body)


class TypedResponse(Response):
    """A JSON response returned by route handlers.

    ``status`` must be one of the statuses declared in the route's
    ``responses`` table. ``body`` may be anything pydantic can serialize:
    models, dataclasses, lists, dicts and primitives. The original value is
    kept on ``data`` for response-contract checks.

    Example::

        return TypedResponse(201, todo, headers={"Set-Cookie": "sessionId=abc"})
    """

    def __init__(self, status: int, body: Any = None, headers: HeadersInit = None):
        response_headers = MultiValueHeaders(headers)
        if body is None:
            serialized = ""
        else:
            serialized = pydantic_core.to_json(body).decode("utf-8")
            response_headers.setdefault("Content-Type", "application/json")
        response_headers.setdefault(MARKER_HEADER, MARKER_VALUE)
        super().__init__(status_code=status, body=serialized, headers=response_headers)
        self.data = body
