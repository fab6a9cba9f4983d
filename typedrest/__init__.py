"""
Typed request routing and validation for HTTP services.

Route descriptors carry input and output schemas; a trie-based router
matches requests to them, validates path, query and body data, invokes the
handler, and returns a response tied to the declared schemas. The same
descriptors produce an OpenAPI document, and a client built from that
document can only call routes the server declares.
"""

from .adapters import Adapter, ASGIAdapter, AwsApiGatewayAdapter, create_asgi_app
from .client import RestClient
from .error_models import ErrorResponse, ValidationFailure
from .exceptions import (
    ClientError,
    DocumentationIncompleteError,
    DuplicateRouteError,
    InvalidPatternError,
    MarkerHeaderMissingError,
    MissingOutputSchemaError,
    MissingParamSchemaError,
    MissingPathParameterError,
    RegistrationError,
    ResponseContractError,
    RouterFrozenError,
    TypedRestError,
    UndeclaredRouteError,
)
from .models import MARKER_HEADER, MARKER_VALUE, HTTPMethod, Outcome, Request, Response, TypedResponse
from .openapi import WELL_KNOWN_PATH, generate_openapi, openapi_json, save_openapi_json
from .paths import PathPattern, compile_path
from .router import Resolution, Router
from .routes import Route, route
from .schemas import ParseResult, PydanticSchema, Schema, as_schema
from .servers import serve

__version__ = "0.1.0"

__all__ = [
    "Router",
    "Route",
    "route",
    "Resolution",
    "Request",
    "Response",
    "TypedResponse",
    "HTTPMethod",
    "Outcome",
    "MARKER_HEADER",
    "MARKER_VALUE",
    "Schema",
    "ParseResult",
    "PydanticSchema",
    "as_schema",
    "PathPattern",
    "compile_path",
    "ErrorResponse",
    "ValidationFailure",
    "generate_openapi",
    "openapi_json",
    "save_openapi_json",
    "WELL_KNOWN_PATH",
    "Adapter",
    "ASGIAdapter",
    "AwsApiGatewayAdapter",
    "create_asgi_app",
    "RestClient",
    "serve",
    "TypedRestError",
    "RegistrationError",
    "InvalidPatternError",
    "DuplicateRouteError",
    "MissingParamSchemaError",
    "RouterFrozenError",
    "DocumentationIncompleteError",
    "MissingOutputSchemaError",
    "ResponseContractError",
    "ClientError",
    "UndeclaredRouteError",
    "MissingPathParameterError",
    "MarkerHeaderMissingError",
]
