"""
Custom exceptions for the typedrest framework.
"""
from typing import Iterable, Optional


class TypedRestError(Exception):
    """Base exception for typedrest errors."""

    pass


class RegistrationError(TypedRestError):
    """Raised when a route cannot be registered.

    Registration errors are fatal at startup: the service must not come up
    with a partially built routing table.
    """

    pass


class InvalidPatternError(RegistrationError):
    """Raised when a route path pattern cannot be compiled."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid path pattern {pattern!r}: {reason}")


class DuplicateRouteError(RegistrationError):
    """Raised when two routes share the same method and path."""

    def __init__(self, method: str, path: str, existing_path: Optional[str] = None):
        self.method = method
        self.path = path
        self.existing_path = existing_path or path
        message = f"Duplicate method {method} for path {path}"
        if self.existing_path != path:
            message += f" (conflicts with {self.existing_path})"
        super().__init__(message)


class MissingParamSchemaError(RegistrationError):
    """Raised when a path parameter has no field in the route's params schema."""

    def __init__(self, method: str, path: str, missing: Iterable[str]):
        self.method = method
        self.path = path
        self.missing = tuple(missing)
        names = ", ".join(self.missing)
        super().__init__(
            f"Route {method} {path} captures path parameter(s) {names} "
            f"with no matching field in its params schema"
        )


class RouterFrozenError(RegistrationError):
    """Raised when a route is added after dispatch has started."""

    pass


class DocumentationIncompleteError(TypedRestError):
    """Raised when routes cannot be described completely."""

    pass


class MissingOutputSchemaError(DocumentationIncompleteError):
    """Raised when a route declares no response schemas."""

    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        super().__init__(f"No output schema is defined for {method} {path}")


class ResponseContractError(TypedRestError):
    """Raised when a handler returns a response its route did not declare."""

    def __init__(self, method: str, path: str, status_code: int, reason: str):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"{method} {path} returned {status_code}: {reason}")


class ClientError(TypedRestError):
    """Base exception for client-side errors."""

    pass


class UndeclaredRouteError(ClientError):
    """Raised when a client calls a route the manifest does not declare."""

    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        super().__init__(f"{method} {path} is not declared by the server")


class MissingPathParameterError(ClientError, KeyError):
    """Raised when a path cannot be formatted because a parameter is missing."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing path parameter {name}")

    def __str__(self) -> str:
        return f"Missing path parameter {self.name}"


class MarkerHeaderMissingError(ClientError):
    """Raised in strict mode when a response lacks the marker header."""

    pass
