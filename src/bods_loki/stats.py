"""In-process pipeline counters, injected into the pipeline at construction."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PipelineStats:
    """Running totals for one pipeline instance.

    All updates happen on the event loop thread, so plain attributes are
    enough.
    """

    cycles: Counter[str] = field(default_factory=Counter)
    lines_processed: int = 0
    line_failures: Counter[str] = field(default_factory=Counter)
    vehicles_parsed: int = 0
    vehicles_sent: int = 0
    sends_ok: int = 0
    sends_failed: int = 0
    last_success_at: float | None = None

    def record_cycle(self, status: str, *, any_success: bool) -> None:
        self.cycles[status] += 1
        if any_success:
            self.last_success_at = time.time()

    def record_line(self, *, vehicles: int = 0, error_kind: str | None = None) -> None:
        self.lines_processed += 1
        if error_kind is None:
            self.vehicles_parsed += vehicles
        else:
            self.line_failures[error_kind] += 1

    def record_send(self, *, vehicles: int, ok: bool) -> None:
        if ok:
            self.sends_ok += 1
            self.vehicles_sent += vehicles
        else:
            self.sends_failed += 1

    def snapshot(self) -> dict[str, Any]:
        return {
            "cycles": dict(self.cycles),
            "lines_processed": self.lines_processed,
            "line_failures": dict(self.line_failures),
            "vehicles_parsed": self.vehicles_parsed,
            "vehicles_sent": self.vehicles_sent,
            "sends_ok": self.sends_ok,
            "sends_failed": self.sends_failed,
            "last_success_at": self.last_success_at,
        }
