import logging

from compresso.domain.events import (
    BatchFinished,
    BatchStarted,
    CancelRequested,
    JobFinished,
    JobProgressUpdated,
    JobStarted,
)
from compresso.infrastructure.event_bus import EventBus
from compresso.ui.dashboard import estimate_output_size_range
from compresso.ui.state import UIState


class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(BatchStarted, self.on_batch_started)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        # JobCompleted, JobFailed and JobCancelled all arrive here
        self.bus.subscribe(JobFinished, self.on_job_finished)
        self.bus.subscribe(CancelRequested, self.on_cancel_requested)

    def on_batch_started(self, event: BatchStarted):
        with self.state._lock:
            self.state.total_jobs = event.total_jobs
            self.state.finished = False

    def on_batch_finished(self, event: BatchFinished):
        with self.state._lock:
            self.state.summary = event.summary
            self.state.finished = True

    def on_job_started(self, event: JobStarted):
        job = event.job
        try:
            size = job.input.real_path.stat().st_size
        except OSError as e:
            self.logger.debug(f"UI: cannot stat {job.input.real_path}: {e}")
            size = 0
        estimate = estimate_output_size_range(size, job.settings.quality, job.settings.preset)
        self.state.start_job(job, size, estimate)

    def on_job_progress(self, event: JobProgressUpdated):
        self.state.update_progress(event.job_id, event.frame)

    def on_job_finished(self, event: JobFinished):
        self.state.finish_job(event.result)

    def on_cancel_requested(self, event: CancelRequested):
        with self.state._lock:
            self.state.cancel_requested = True
