"""Caller-visible errors raised by the trust engine."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class TrustError(Exception):
	"""Base class for trust engine errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	reason: str = "trust_error"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class ValidationError(TrustError):
	"""Malformed input, rejected before any state change."""

	status_code = _HTTP_422
	reason = "validation_error"


class NotFoundError(TrustError):
	status_code = status.HTTP_404_NOT_FOUND
	reason = "not_found"


class AuthorizationError(TrustError):
	"""Actor is not permitted to perform the operation."""

	status_code = status.HTTP_403_FORBIDDEN
	reason = "forbidden"


class ConflictError(TrustError):
	status_code = status.HTTP_409_CONFLICT
	reason = "conflict"


class SelfVouchError(ConflictError):
	reason = "self_vouch"


class DuplicateRequestError(ConflictError):
	reason = "duplicate_request"


class LimitExceededError(ConflictError):
	"""The vouchee already holds the maximum number of vouches of this type."""

	reason = "limit_exceeded"


class InvalidStateTransition(ConflictError):
	reason = "invalid_state"


class ConfigError(ValueError):
	"""Raised when a trust configuration document cannot be used."""
