from __future__ import annotations


class JobwalkError(Exception):
    """Base class for every error raised by jobwalk services."""


class NotFound(JobwalkError):
    """A Session, Job, Chunk or Attachment does not exist (or is soft-deleted)."""


class UpstreamError(JobwalkError):
    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class UpstreamTimeout(UpstreamError):
    """An external call exceeded its deadline. Retryable."""


class UpstreamFailure(UpstreamError):
    """An external call returned non-success or an unusable payload. Retryable."""


class ParseFailure(JobwalkError):
    """Model output could not be turned into the expected structure."""


class ValidationFailure(JobwalkError):
    """An inbound message or request is malformed."""


class InvalidTransition(ValidationFailure):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move session from {current!r} to {target!r}")
        self.current = current
        self.target = target
