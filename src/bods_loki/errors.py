"""Error taxonomy shared by the pipeline components."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification attached to every pipeline error."""

    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"
    SEND_FAILED = "send_failed"
    VALIDATION_FAILED = "validation_failed"


class PipelineError(Exception):
    """Base class for classified pipeline errors."""

    kind: ErrorKind = ErrorKind.FETCH_FAILED

    def __init__(
        self,
        message: str,
        *,
        line_ref: str | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message)
        self.line_ref = line_ref
        if kind is not None:
            self.kind = kind


class AllLinesFailedError(Exception):
    """Raised by a poll cycle in which no line could be fetched and parsed.

    ``report`` holds the cycle report with every per-line error.
    """

    def __init__(self, message: str, report: Any = None) -> None:
        super().__init__(message)
        self.report = report
