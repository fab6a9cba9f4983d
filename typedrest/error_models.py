"""
Error response models for the typedrest framework.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class ValidationFailure(BaseModel):
    """A single field-addressable validation failure.

    Failures are values: schemas return them, the dispatcher collects them and
    serializes them into the 400 response body. They are never raised.
    """

    model_config = ConfigDict(frozen=True)

    path: Tuple[Union[str, int], ...] = Field(
        (),
        description="Locator of the offending field, outermost first"
    )

    message: str = Field(
        ...,
        description="Human-readable description of the failure"
    )

    expected_type: Optional[str] = Field(
        None,
        description="Machine-readable failure kind, e.g. 'missing' or 'int_parsing'"
    )

    def prefixed(self, *prefix: Union[str, int]) -> "ValidationFailure":
        """Return a copy whose path is nested under *prefix*."""
        return self.model_copy(update={"path": tuple(prefix) + tuple(self.path)})

    @classmethod
    def from_pydantic_errors(cls, errors: Sequence[Dict[str, Any]]) -> List["ValidationFailure"]:
        """Convert ``pydantic.ValidationError.errors()`` output into failures."""
        return [
            cls(
                path=tuple(error.get("loc", ())),
                message=error.get("msg", "Invalid value"),
                expected_type=error.get("type"),
            )
            for error in errors
        ]


class ErrorResponse(BaseModel):
    """Standard error response model.

    This model represents the structure of error responses returned by the
    dispatcher when request data fails validation.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Validation failed",
                "details": [
                    {
                        "path": ["body", "title"],
                        "message": "Field required",
                        "expected_type": "missing"
                    }
                ]
            }
        }
    )

    error: str = Field(
        ...,
        description="Human-readable error message describing what went wrong"
    )

    details: Optional[List[ValidationFailure]] = Field(
        None,
        description="Every validation failure found in the request"
    )

    def model_dump_json(self, **kwargs):
        """Serialize with ``exclude_none`` on by default for cleaner responses."""
        kwargs.setdefault('exclude_none', True)
        return super().model_dump_json(**kwargs)

    @classmethod
    def from_failures(
        cls,
        failures: Sequence[ValidationFailure],
        message: str = "Validation failed",
    ) -> "ErrorResponse":
        """Create an ErrorResponse from a list of validation failures."""
        return cls(error=message, details=list(failures))
