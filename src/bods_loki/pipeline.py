"""Poll-cycle orchestration: fan out per line, fan in, dispatch."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from bods_loki.bods import BodsClient
from bods_loki.dry_run import DryRunPrinter
from bods_loki.errors import AllLinesFailedError, ErrorKind, PipelineError
from bods_loki.logging import get_logger, log_context
from bods_loki.loki import LokiClient, SendError
from bods_loki.parser import SiriVmParser
from bods_loki.scheduler import PipelineState, Scheduler
from bods_loki.stats import PipelineStats

if TYPE_CHECKING:
    import structlog

    from bods_loki.config import PipelineConfig
    from bods_loki.models import ParsedBatch

logger = get_logger(__name__)


class ConfigValidationError(PipelineError):
    """Raised at construction when the pipeline config is unusable."""

    kind = ErrorKind.VALIDATION_FAILED


class CycleStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"


def classify_cycle(total: int, failed: int) -> CycleStatus:
    """Classify a cycle from its line count and failed-line count."""
    if failed == 0:
        return CycleStatus.SUCCESS
    if failed >= total:
        return CycleStatus.TOTAL_FAILURE
    return CycleStatus.PARTIAL_FAILURE


@dataclass(frozen=True)
class LineOutcome:
    """Result of fetching and parsing one line: a batch or a classified error."""

    line_ref: str
    batch: ParsedBatch | None = None
    error: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleReport:
    cycle_id: str
    status: CycleStatus
    outcomes: list[LineOutcome] = field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_sec: float = 0.0

    @property
    def successes(self) -> list[LineOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failures(self) -> list[LineOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def vehicle_count(self) -> int:
        return sum(len(o.batch.vehicles) for o in self.successes if o.batch is not None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_sec": round(self.duration_sec, 3),
            "successful_lines": len(self.successes),
            "failed_lines": len(self.failures),
            "vehicles": self.vehicle_count,
            "errors": {
                o.line_ref: {"kind": o.error.kind.value, "message": str(o.error)}
                for o in self.failures
                if o.error is not None
            },
        }


class Pipeline:
    """Polls every configured line concurrently and forwards parsed batches.

    Usage:
        pipeline = Pipeline(config)
        report = await pipeline.process_cycle()   # one cycle
        await pipeline.run(stop_event)            # until stop_event is set
        await pipeline.aclose()
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        fetcher: BodsClient | None = None,
        parser: SiriVmParser | None = None,
        loki_client: LokiClient | None = None,
        printer: DryRunPrinter | None = None,
        stats: PipelineStats | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if not config.api_key:
            msg = "API key is required"
            raise ConfigValidationError(msg)
        if not config.line_refs:
            msg = "at least one line reference is required"
            raise ConfigValidationError(msg)

        self.config = config
        self._log = log or logger
        self.stats = stats or PipelineStats()
        self.fetcher = fetcher or BodsClient(
            config.api_key,
            config.dataset_id,
            timeout_sec=config.http_timeout_sec,
        )
        self.parser = parser or SiriVmParser()

        self.loki_client: LokiClient | None = None
        self.printer: DryRunPrinter | None = None
        if config.dry_run:
            self.printer = printer or DryRunPrinter()
        else:
            self.loki_client = loki_client or LokiClient(
                config.loki_url,
                config.loki_user,
                config.loki_password,
                timeout_sec=config.http_timeout_sec,
            )

        self._scheduler = Scheduler(
            self.process_cycle,
            config.interval,
            config.shutdown_grace,
            log=self._log,
        )

    @property
    def state(self) -> PipelineState:
        return self._scheduler.state

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll on the configured interval until ``stop_event`` is set."""
        self._log.info(
            "Pipeline starting",
            mode="dry_run" if self.config.dry_run else "production",
            line_refs=self.config.line_refs,
            interval_sec=self.config.interval.total_seconds(),
        )
        await self._scheduler.run(stop_event)

    async def process_cycle(self) -> CycleReport:
        """Fetch, parse and dispatch every configured line once.

        Returns:
            The cycle report, for success and partial failure alike.

        Raises:
            AllLinesFailedError: If every line failed to fetch or parse.
        """
        cycle_id = str(uuid.uuid4())[:8]
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        line_refs = list(self.config.line_refs)

        with log_context(cycle_id=cycle_id):
            self._log.info("Starting poll cycle", lines_count=len(line_refs))

            outcomes = await self._collect(line_refs)
            failures = [o for o in outcomes if not o.ok]
            status = classify_cycle(len(line_refs), len(failures))

            for outcome in outcomes:
                if outcome.batch is not None:
                    await self._dispatch(outcome.batch)

            report = CycleReport(
                cycle_id=cycle_id,
                status=status,
                outcomes=outcomes,
                started_at=started_at,
                ended_at=datetime.now(timezone.utc),
                duration_sec=time.perf_counter() - started,
            )
            self.stats.record_cycle(status.value, any_success=len(failures) < len(line_refs))
            self._log.info(
                "Poll cycle complete",
                status=status.value,
                successful_lines=len(report.successes),
                failed_lines=len(failures),
                vehicles=report.vehicle_count,
                duration_sec=round(report.duration_sec, 3),
            )

        if status is CycleStatus.TOTAL_FAILURE:
            errors = "; ".join(str(o.error) for o in failures)
            msg = f"all lines failed: {errors}"
            raise AllLinesFailedError(msg, report=report)
        return report

    async def _collect(self, line_refs: list[str]) -> list[LineOutcome]:
        """Run one task per line and gather outcomes in completion order."""
        tasks = [asyncio.create_task(self._process_line(ref)) for ref in line_refs]
        outcomes: list[LineOutcome] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                outcomes.append(await next_done)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        return outcomes

    async def _process_line(self, line_ref: str) -> LineOutcome:
        with log_context(line_ref=line_ref):
            try:
                payload = await self.fetcher.fetch(line_ref)
            except PipelineError as exc:
                return self._failed(line_ref, exc)
            except Exception as exc:
                self._log.error("Unexpected fetch error", exc_info=exc)
                error = PipelineError(str(exc), line_ref=line_ref, kind=ErrorKind.FETCH_FAILED)
                return self._failed(line_ref, error)

            try:
                batch = self.parser.parse(payload.xml_data, line_ref, payload.fetched_at)
            except PipelineError as exc:
                return self._failed(line_ref, exc)
            except Exception as exc:
                self._log.error("Unexpected parse error", exc_info=exc)
                error = PipelineError(str(exc), line_ref=line_ref, kind=ErrorKind.PARSE_FAILED)
                return self._failed(line_ref, error)

            self.stats.record_line(vehicles=len(batch.vehicles))
            self._log.debug("Line processed", vehicles=len(batch.vehicles))
            return LineOutcome(line_ref=line_ref, batch=batch)

    def _failed(self, line_ref: str, error: PipelineError) -> LineOutcome:
        self.stats.record_line(error_kind=error.kind.value)
        self._log.error(
            "Error processing line",
            line_ref=line_ref,
            error_kind=error.kind.value,
            error=str(error),
        )
        return LineOutcome(line_ref=line_ref, error=error)

    async def _dispatch(self, batch: ParsedBatch) -> bool:
        """Print or push one batch; failures are logged, never raised."""
        if self.printer is not None:
            try:
                self.printer.print_batch(batch)
            except Exception as exc:
                self.stats.record_send(vehicles=len(batch.vehicles), ok=False)
                self._log.error("Dry run output failed", line_ref=batch.line_ref, error=str(exc))
                return False
            return True

        if self.loki_client is None:
            self._log.error("Loki client not initialized", line_ref=batch.line_ref)
            return False

        try:
            await self.loki_client.send(batch)
        except SendError as exc:
            self.stats.record_send(vehicles=len(batch.vehicles), ok=False)
            self._log.error(
                "Error sending to Loki",
                line_ref=batch.line_ref,
                error_kind=exc.kind.value,
                error=str(exc),
            )
            return False
        except Exception as exc:
            self.stats.record_send(vehicles=len(batch.vehicles), ok=False)
            self._log.error(
                "Unexpected error sending to Loki",
                line_ref=batch.line_ref,
                error_kind=ErrorKind.SEND_FAILED.value,
                exc_info=exc,
            )
            return False

        self.stats.record_send(vehicles=len(batch.vehicles), ok=True)
        return True

    async def aclose(self) -> None:
        await self.fetcher.aclose()
        if self.loki_client is not None:
            await self.loki_client.aclose()

