"""Exception hierarchy for the generation workflow."""

from __future__ import annotations

from .models import ErrorKind


class SKKNError(Exception):
    """Base class for workflow errors."""


class GenerationError(SKKNError):
    """The LLM client failed while producing a step."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class GenerationCancelled(SKKNError):
    """A cancellation token stopped an in-flight stream."""


class WorkflowBusyError(SKKNError):
    """A generation was requested while another one is streaming."""


class InvalidTransitionError(SKKNError):
    """A manual intervention violated its precondition."""


class StorageQuotaError(SKKNError):
    """A value did not fit into a size-bounded store."""
