import threading
from collections import deque
from datetime import datetime
from typing import Optional, Tuple

from compresso.domain.models import BatchSummary, CompressionJob, JobResult, JobStatus, ProgressFrame


class UIState:
    """Thread-safe state shared between the event handlers and the dashboard."""

    def __init__(self):
        self._lock = threading.RLock()

        # Counters
        self.total_jobs = 0
        self.completed_count = 0
        self.failed_count = 0
        self.cancelled_count = 0

        # Bytes tracking
        self.total_input_bytes = 0
        self.total_output_bytes = 0

        # Current job
        self.active_job: Optional[CompressionJob] = None
        self.active_input_size = 0
        self.active_estimate: Optional[Tuple[int, int]] = None
        self.active_frame: Optional[ProgressFrame] = None
        self.job_start_time: Optional[datetime] = None

        self.recent_results = deque(maxlen=5)
        self.summary: Optional[BatchSummary] = None

        # Global status
        self.processing_start_time: Optional[datetime] = None
        self.cancel_requested = False
        self.finished = False

    @property
    def space_saved_bytes(self) -> int:
        with self._lock:
            return max(0, self.total_input_bytes - self.total_output_bytes)

    @property
    def compression_ratio(self) -> float:
        with self._lock:
            if self.total_input_bytes == 0:
                return 0.0
            return self.total_output_bytes / self.total_input_bytes

    @property
    def done_count(self) -> int:
        with self._lock:
            return self.completed_count + self.failed_count + self.cancelled_count

    def start_job(self, job: CompressionJob, input_size: int, estimate: Tuple[int, int]):
        with self._lock:
            if self.processing_start_time is None:
                self.processing_start_time = datetime.now()
            self.active_job = job
            self.active_input_size = input_size
            self.active_estimate = estimate
            self.active_frame = None
            self.job_start_time = datetime.now()

    def update_progress(self, job_id: str, frame: ProgressFrame):
        with self._lock:
            if self.active_job is not None and self.active_job.job_id == job_id:
                self.active_frame = frame

    def finish_job(self, result: JobResult):
        with self._lock:
            if result.status == JobStatus.COMPLETED:
                self.completed_count += 1
                self.total_input_bytes += result.original_size
                self.total_output_bytes += result.compressed_size or 0
            elif result.status == JobStatus.CANCELLED:
                self.cancelled_count += 1
            else:
                self.failed_count += 1
            self.recent_results.appendleft(result)
            if self.active_job is not None and self.active_job.job_id == result.job_id:
                self.active_job = None
                self.active_frame = None
                self.active_estimate = None
