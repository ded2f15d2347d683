"""
Result type — Railway-Oriented Programming for the distribution pipeline.

A Result[T] is either Success(value: T) or Failure(error: FailureDescription).
Adapters return Result instead of raising, so a failure in any stage
short-circuits the rest of the pipeline through .flat_map():

    read_identity ──Success──▶ sign ──Success──▶ send ──Success──▶ decode
         │ Failure               │ Failure          │ Failure          │ Failure
         └───────────────────────┴──────────────────┴──────────────────┴──▶ Result[T]

FailureDescription is the single error type callers see. Its `code` says
which stage failed and its `exception` keeps the typed domain error (whose
__cause__ is the original library exception) for diagnostics.
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


@unique
class ErrorCode(Enum):
    """Failure discriminant, one member per kind of pipeline failure."""

    CERTIFICATE_ERROR = "CERTIFICATE_ERROR"
    """Container unreadable, wrong password, missing or ambiguous bags."""

    EXPIRED_CERTIFICATE = "EXPIRED_CERTIFICATE"
    """Identity is past its notAfter; raised before any network I/O."""

    INVALID_QUERY = "INVALID_QUERY"
    """Tax ID, jurisdiction, cursor or document key failed validation."""

    SIGNATURE_TARGET_NOT_FOUND = "SIGNATURE_TARGET_NOT_FOUND"
    """Request fragment is malformed or lacks the element to sign."""

    SIGNING_ERROR = "SIGNING_ERROR"
    """A cryptographic operation failed while building the signature."""

    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    """No interpretable response body was obtained from the endpoint."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """The round-trip exceeded the configured timeout."""

    DECODE_ERROR = "DECODE_ERROR"
    """The response as a whole could not be parsed."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """The service is misconfigured or not initialized."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Anything not classified above."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor: error code, message, cause and timestamp.

    >>> desc = FailureDescription(ErrorCode.INVALID_QUERY, "tax id must have 11 or 14 digits")
    >>> desc.code
    <ErrorCode.INVALID_QUERY: 'INVALID_QUERY'>
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def raise_error(self) -> None:
        """Re-raise the captured exception, or a RuntimeError when there is none."""
        if self.exception is not None:
            raise self.exception
        raise RuntimeError(f"{self.code.value}: {self.message}")

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"


class Result(Generic[T]):
    """
    Either Success(value) or Failure(FailureDescription).

        >>> Result.success(2).map(lambda x: x * 21).value()
        42
        >>> Result.failure(ErrorCode.DECODE_ERROR, "bad xml").map(lambda x: x).is_failure()
        True
    """

    # ──────────────────────── Introspection ────────────────────────

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def value(self) -> T:
        """Extract the success value. Raises ValueError on a Failure."""
        match self:
            case Success(v):
                return v
            case Failure(err):
                raise ValueError(f"Cannot get value from a Failure: {err.message}")
        raise TypeError("unreachable")  # pragma: no cover

    def error(self) -> FailureDescription:
        """Extract the failure description. Raises ValueError on a Success."""
        match self:
            case Failure(err):
                return err
            case Success(v):
                raise ValueError(f"Cannot get error from a Success: {v!r}")
        raise TypeError("unreachable")  # pragma: no cover

    # ──────────────────────── Transformations ────────────────────────

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        match self:
            case Success(v):
                return on_success(v)
            case Failure(err):
                return on_failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        """Transform the success value. Short-circuits on failure."""
        match self:
            case Success(v):
                return Success(mapper(v))
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """Chain a Result-returning stage. Short-circuits on failure."""
        match self:
            case Success(v):
                return mapper(v)
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map_failure(
        self, mapper: Callable[[FailureDescription], FailureDescription]
    ) -> Result[T]:
        """Transform the failure description. Success passes through unchanged."""
        match self:
            case Success(_):
                return self
            case Failure(err):
                return Failure(mapper(err))
        raise TypeError("unreachable")  # pragma: no cover

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Run a side effect (usually logging) on the success value."""
        match self:
            case Success(v):
                action(v)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        match self:
            case Failure(err):
                action(err)
        return self

    def get_or_else(self, default: T) -> T:
        match self:
            case Success(v):
                return v
            case _:
                return default

    # ──────────────────────── Factories ────────────────────────

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: BaseException | None = None,
    ) -> Result[T]:
        return Failure(FailureDescription(code=code, message=message, exception=exception))

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[T]:
        return Failure(error)

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Run a computation that may raise and capture the outcome as a Result.

        Domain errors carry their own code, so a CertificateError raised
        inside a signing stage is still reported as CERTIFICATE_ERROR.
        Any other exception is reported under `error_code`.
        """
        try:
            return Result.success(computation())
        except Exception as e:
            code = getattr(e, "code", None)
            if not isinstance(code, ErrorCode):
                code = error_code
            return Result.failure(code, f"{error_message}: {e}", e)

    # ──────────────────────── Dunder methods ────────────────────────

    def __bool__(self) -> bool:
        return self.is_success()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        match (self, other):
            case (Success(a), Success(b)):
                return a == b
            case (Failure(a), Failure(b)):
                return a.code == b.code and a.message == b.message
            case _:
                return False

    def __hash__(self) -> int:  # pragma: no cover - overridden by subclasses
        return id(self)


@dataclass(frozen=True, slots=True, eq=False)
class Success(Result[T]):
    """The success track — wraps a value of type T."""

    _value: T

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        object.__setattr__(self, "_value", value)

    def __repr__(self) -> str:
        return f"Success({self._value!r})"

    def __hash__(self) -> int:
        return hash(("Success", self._value))


Success.__match_args__ = ("_value",)


@dataclass(frozen=True, slots=True, eq=False)
class Failure(Result[T]):
    """The failure track — wraps a FailureDescription."""

    _error: FailureDescription

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        object.__setattr__(self, "_error", error)

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"

    def __hash__(self) -> int:
        return hash(("Failure", self._error.code, self._error.message))


Failure.__match_args__ = ("_error",)
