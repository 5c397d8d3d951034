"""Failure taxonomy for outbound requests routed through the dispatcher."""

from __future__ import annotations


class DispatchError(Exception):
    """Base failure; ``target`` identifies the request for logging."""

    def __init__(self, message: str, *, target: str) -> None:
        super().__init__(f"{message} target={target}")
        self.target = target


class TransientDispatchError(DispatchError):
    """Failure the dispatcher retries while the request has budget left."""


class RateLimited(TransientDispatchError):
    pass


class ConnectionReset(TransientDispatchError):
    pass


class DispatchTimeout(DispatchError):
    """The outbound call exceeded its deadline; surfaced without retrying."""


class UpstreamError(DispatchError):
    def __init__(self, message: str, *, target: str, status_code: int | None = None) -> None:
        super().__init__(message, target=target)
        self.status_code = status_code


class MalformedResponse(UpstreamError):
    """The upstream answered but the body could not be used."""


class RetriesExhausted(DispatchError):
    def __init__(self, last_error: TransientDispatchError, *, attempts: int) -> None:
        super().__init__(
            f"gave up after {attempts} attempts ({type(last_error).__name__})",
            target=last_error.target,
        )
        self.last_error = last_error
        self.attempts = attempts


__all__ = [
    "ConnectionReset",
    "DispatchError",
    "DispatchTimeout",
    "MalformedResponse",
    "RateLimited",
    "RetriesExhausted",
    "TransientDispatchError",
    "UpstreamError",
]
