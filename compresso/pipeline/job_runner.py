import logging
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from compresso.config.models import AppConfig
from compresso.domain.errors import CompressoError, ValidationError
from compresso.domain.events import JobCancelled, JobCompleted, JobFailed, JobProgressUpdated, JobStarted
from compresso.domain.models import (
    CompressionJob,
    ErrorDetail,
    JobRequest,
    JobResult,
    JobStatus,
    PathRole,
    VideoMetadata,
)
from compresso.infrastructure.atomic_output import AtomicOutput
from compresso.infrastructure.encoder_resolver import EncoderResolver
from compresso.infrastructure.event_bus import EventBus
from compresso.infrastructure.ffmpeg import SettingsCompiler, default_output_path
from compresso.infrastructure.ffprobe import FFprobeAdapter
from compresso.infrastructure.path_guard import PathGuard
from compresso.infrastructure.progress import DEFAULT_PATTERNS, PatternCache, ProgressParser
from compresso.infrastructure.supervisor import CancelToken, ProcessState, ProcessSupervisor

ProbeFactory = Callable[[Path], FFprobeAdapter]


class JobRunner:
    """Carries one file through validate, resolve, compile, supervise and commit."""

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        path_guard: Optional[PathGuard] = None,
        resolver: Optional[EncoderResolver] = None,
        compiler: Optional[SettingsCompiler] = None,
        probe_factory: Optional[ProbeFactory] = None,
        cancel_token: Optional[CancelToken] = None,
        patterns: PatternCache = DEFAULT_PATTERNS,
    ):
        self.config = config
        self.event_bus = event_bus
        self.path_guard = path_guard or PathGuard(extra_protected_dirs=config.security.extra_protected_dirs)
        self.resolver = resolver or EncoderResolver(
            version_signature=config.encoder.version_signature,
            verify_timeout=config.encoder.verify_timeout_seconds,
        )
        self.compiler = compiler or SettingsCompiler()
        self.probe_factory = probe_factory or self._default_probe_factory
        self.cancel_token = cancel_token or CancelToken()
        self.patterns = patterns
        self.logger = logging.getLogger(__name__)

    def _default_probe_factory(self, encoder: Path) -> FFprobeAdapter:
        ffprobe = self.resolver.resolve_companion(encoder, "ffprobe", self.config.encoder.ffprobe_path)
        return FFprobeAdapter(ffprobe_path=str(ffprobe))

    def prepare(self, request: JobRequest) -> CompressionJob:
        """Validates both paths and the settings. Raises before anything is spawned or created."""
        source = self.path_guard.validate(request.input, PathRole.INPUT)
        output_raw = request.output or str(default_output_path(source.real_path, request.settings))
        target = self.path_guard.validate(output_raw, PathRole.OUTPUT, overwrite_allowed=request.overwrite)
        if target.real_path == source.real_path:
            raise ValidationError(f"Output would replace the input file: {source.real_path}", path=source.real_path)
        self.compiler.validate(request.settings, source.real_path, target.real_path)
        return CompressionJob(
            job_id=request.job_id,
            input=source,
            output=target,
            settings=request.settings,
            overwrite=request.overwrite,
        )

    def resolve_encoder(self) -> Path:
        return self.resolver.resolve(self.config.encoder.ffmpeg_path, verify=self.config.encoder.verify_bundled)

    def execute(self, job: CompressionJob) -> JobResult:
        """Runs a validated job. Raises CompressoError on failure; cancellation is a result."""
        start_time = time.monotonic()
        filename = job.input.real_path.name
        original_size = job.input.real_path.stat().st_size

        encoder = self.resolve_encoder()
        metadata: VideoMetadata = self.probe_factory(encoder).probe(job.input.real_path)
        job.metadata = metadata
        plan = self.compiler.compile(
            job.settings, job.input, job.output, metadata, job_id=job.job_id, nonce=uuid.uuid4().hex[:8]
        )

        if self.cancel_token.cancelled:
            return self._cancelled(job, original_size, start_time)

        self.logger.info(f"JOB_START: {filename} -> {plan.final_path} (crf={plan.crf}, preset={job.settings.preset.value})")
        job.status = JobStatus.PROCESSING
        self.event_bus.publish(JobStarted(job=job))

        def on_frame(frame):
            self.event_bus.publish(JobProgressUpdated(job_id=job.job_id, frame=frame))

        with AtomicOutput(plan.final_path, plan.temp_path, overwrite=job.overwrite) as output:
            supervisor = ProcessSupervisor(
                plan.argv(encoder),
                parser=ProgressParser(plan.expected_duration, metadata.fps, patterns=self.patterns),
                sink=on_frame,
                cancel_token=self.cancel_token,
                grace_period=self.config.encoder.grace_period_seconds,
                tail_lines=self.config.encoder.tail_lines,
            )
            outcome = supervisor.run()
            if outcome.state == ProcessState.CANCELLED:
                return self._cancelled(job, original_size, start_time)
            final_path = output.commit()

        compressed_size = final_path.stat().st_size
        elapsed = time.monotonic() - start_time
        job.status = JobStatus.COMPLETED
        self.logger.info(
            f"JOB_END: {filename} status=completed {original_size} -> {compressed_size} bytes elapsed={elapsed:.2f}s"
        )
        return JobResult(
            job_id=job.job_id,
            input_path=str(job.input.real_path),
            output_path=str(final_path),
            status=JobStatus.COMPLETED,
            original_size=original_size,
            compressed_size=compressed_size,
            elapsed_seconds=elapsed,
        )

    def _cancelled(self, job: CompressionJob, original_size: int, start_time: float) -> JobResult:
        job.status = JobStatus.CANCELLED
        self.logger.info(f"JOB_END: {job.input.real_path.name} status=cancelled")
        return JobResult(
            job_id=job.job_id,
            input_path=str(job.input.real_path),
            output_path=str(job.output.real_path),
            status=JobStatus.CANCELLED,
            original_size=original_size,
            elapsed_seconds=time.monotonic() - start_time,
        )

    def run(self, request: JobRequest) -> JobResult:
        """Runs one request and always returns a JobResult; failures are captured, not raised."""
        start_time = time.monotonic()
        job: Optional[CompressionJob] = None
        try:
            job = self.prepare(request)
            result = self.execute(job)
        except Exception as e:
            # Per-item isolation: any failure ends this job only
            if not isinstance(e, CompressoError):
                self.logger.exception(f"JOB_FAILED: unexpected error for {request.input}")
            else:
                self.logger.error(f"JOB_FAILED: {request.input}: [{e.kind}] {e.message}")
            if job is not None:
                job.status = JobStatus.FAILED
            detail = ErrorDetail.from_exception(e)
            result = JobResult(
                job_id=request.job_id,
                input_path=str(job.input.real_path) if job else request.input,
                output_path=str(job.output.real_path) if job else request.output,
                status=JobStatus.FAILED,
                original_size=self._size_of(job),
                elapsed_seconds=time.monotonic() - start_time,
                error=detail.message,
                error_detail=detail,
            )

        if result.status == JobStatus.COMPLETED:
            self.event_bus.publish(JobCompleted(result=result))
        elif result.status == JobStatus.CANCELLED:
            self.event_bus.publish(JobCancelled(result=result))
        else:
            self.event_bus.publish(JobFailed(result=result))
        return result

    @staticmethod
    def _size_of(job: Optional[CompressionJob]) -> int:
        if job is None:
            return 0
        try:
            return job.input.real_path.stat().st_size
        except OSError:
            return 0
