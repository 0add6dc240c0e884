from pydantic import BaseModel
from compresso.domain.models import BatchSummary, CompressionJob, JobResult, ProgressFrame


class Event(BaseModel):
    """Base class for all domain events."""
    pass


class BatchStarted(Event):
    total_jobs: int


class BatchFinished(Event):
    summary: BatchSummary


class JobStarted(Event):
    job: CompressionJob


class JobProgressUpdated(Event):
    job_id: str
    frame: ProgressFrame


class JobFinished(Event):
    result: JobResult


class JobCompleted(JobFinished):
    pass


class JobFailed(JobFinished):
    pass


class JobCancelled(JobFinished):
    pass


class CancelRequested(Event):
    """Emitted when the user asks to stop (Ctrl+C)."""
    pass
