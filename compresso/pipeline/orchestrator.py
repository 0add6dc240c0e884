import logging
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from compresso.config.models import AppConfig
from compresso.domain.errors import ValidationError
from compresso.domain.events import BatchFinished, BatchStarted, CancelRequested
from compresso.domain.models import BatchSummary, EncodeSettings, JobRequest
from compresso.infrastructure.event_bus import EventBus
from compresso.infrastructure.file_scanner import FileScanner
from compresso.infrastructure.supervisor import CancelToken
from compresso.pipeline.job_runner import JobRunner


class Orchestrator:
    """Runs a batch of jobs one at a time and folds their results.

    A failing job is recorded and the next one proceeds. Once the cancel token
    is set the in-flight job is cancelled by its supervisor and no further job
    starts.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        job_runner: JobRunner,
        cancel_token: Optional[CancelToken] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.job_runner = job_runner
        self.cancel_token = cancel_token or job_runner.cancel_token
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.event_bus.subscribe(CancelRequested, self._on_cancel_requested)

    def _on_cancel_requested(self, event: CancelRequested):
        self.cancel_token.cancel()

    def plan(
        self,
        inputs: Sequence[str],
        settings: EncodeSettings,
        output: Optional[str] = None,
        overwrite: bool = False,
    ) -> List[JobRequest]:
        """Expands inputs eagerly and numbers the resulting requests in order."""
        files = self.file_scanner.expand(inputs)
        if output and len(files) > 1:
            raise ValidationError("--output can only be used with a single input file")
        return [
            JobRequest(
                input=f,
                output=output,
                settings=settings,
                overwrite=overwrite,
                job_id=f"{i:03d}",
            )
            for i, f in enumerate(files, 1)
        ]

    def output_directories(self, requests: Iterable[JobRequest]) -> List[Path]:
        dirs: List[Path] = []
        for request in requests:
            target = Path(request.output) if request.output else Path(request.input)
            parent = target.expanduser().parent.resolve()
            if parent not in dirs:
                dirs.append(parent)
        return dirs

    def run(self, requests: Sequence[JobRequest]) -> BatchSummary:
        start_time = self.clock()
        self.logger.info(f"BATCH_START: {len(requests)} job(s)")
        self.event_bus.publish(BatchStarted(total_jobs=len(requests)))

        summary = BatchSummary()
        for request in requests:
            if self.cancel_token.cancelled:
                self.logger.info(f"BATCH_CANCELLED: {len(requests) - summary.processed} job(s) not started")
                break
            result = self.job_runner.run(request)
            summary = summary.fold(result)

        summary = summary.model_copy(update={"elapsed_seconds": self.clock() - start_time})
        self.logger.info(
            f"BATCH_END: processed={summary.processed} ok={summary.successful} "
            f"failed={summary.failed} cancelled={summary.cancelled} saved={summary.bytes_saved}"
        )
        self.event_bus.publish(BatchFinished(summary=summary))
        return summary
