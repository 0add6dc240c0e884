import logging
import queue
import subprocess
import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, List, Optional, Sequence
from pydantic import BaseModel

from compresso.domain.errors import ProcessError
from compresso.domain.models import ProgressFrame
from compresso.infrastructure.progress import ProgressParser

_LINE = "line"
_EOF = "eof"
_ERROR = "error"
_CANCEL = "cancel"


class CancelToken:
    """Cooperative cancellation flag.

    ``cancel`` only sets an Event and calls registered callbacks without taking
    locks, so it is safe to call from a signal handler.
    """

    def __init__(self):
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()
        for callback in list(self._callbacks):
            callback()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def add_callback(self, callback: Callable[[], None]):
        self._callbacks.append(callback)
        if self._event.is_set():
            callback()

    def remove_callback(self, callback: Callable[[], None]):
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass


class ProcessState(str, Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunOutcome(BaseModel):
    state: ProcessState
    return_code: Optional[int] = None
    tail: List[str] = []
    frames: int = 0


class ProcessSupervisor:
    """Runs one encoder process and watches its diagnostic stream.

    A reader thread forwards stderr lines into a queue; cancellation pushes a
    message into the same queue, so the supervising thread blocks on a single
    ``get`` instead of polling. Cancelling terminates the child, waits for
    ``grace_period`` and kills it if it is still alive.

    ``run`` returns a RunOutcome for COMPLETED and CANCELLED and raises
    ProcessError for FAILED.
    """

    def __init__(
        self,
        argv: Sequence[str],
        parser: Optional[ProgressParser] = None,
        sink: Optional[Callable[[ProgressFrame], None]] = None,
        cancel_token: Optional[CancelToken] = None,
        grace_period: float = 5.0,
        tail_lines: int = 20,
    ):
        self.argv = [str(a) for a in argv]
        self.parser = parser
        self.sink = sink
        self.cancel_token = cancel_token or CancelToken()
        self.grace_period = grace_period
        self.tail_lines = tail_lines
        self.state = ProcessState.IDLE
        self.logger = logging.getLogger(__name__)

    def _spawn(self) -> subprocess.Popen:
        self.state = ProcessState.SPAWNING
        try:
            process = subprocess.Popen(
                self.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            self.state = ProcessState.FAILED
            raise ProcessError(f"Failed to start encoder {self.argv[0]}: {e}") from e
        self.state = ProcessState.RUNNING
        return process

    @staticmethod
    def _read_stream(stream, messages: "queue.SimpleQueue"):
        try:
            for line in stream:
                messages.put((_LINE, line))
        except (OSError, ValueError) as e:
            messages.put((_ERROR, e))
        finally:
            messages.put((_EOF, None))

    def terminate(self, process: subprocess.Popen):
        """Graceful stop, escalating to kill after the grace period."""
        if process.poll() is not None:
            return
        self.logger.info(f"FFMPEG_TERMINATE: pid={process.pid}")
        process.terminate()
        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"FFMPEG_KILL: pid={process.pid} ignored terminate for {self.grace_period}s")
            process.kill()
            process.wait()

    def run(self) -> RunOutcome:
        start_time = time.monotonic()
        self.logger.info(f"FFMPEG_START: {' '.join(self.argv)}")
        process = self._spawn()

        messages: "queue.SimpleQueue" = queue.SimpleQueue()
        reader = threading.Thread(
            target=self._read_stream,
            args=(process.stderr, messages),
            name=f"encoder-stderr-{process.pid}",
            daemon=True,
        )
        reader.start()

        def on_cancel():
            messages.put((_CANCEL, None))

        tail = deque(maxlen=self.tail_lines)
        last_progress: Optional[str] = None
        stream_error: Optional[BaseException] = None
        cancelled = False
        frames = 0

        self.cancel_token.add_callback(on_cancel)
        try:
            while True:
                kind, payload = messages.get()
                if kind == _LINE:
                    line = payload.rstrip("\r\n")
                    frame = self.parser.feed(line) if self.parser else None
                    if frame is not None:
                        last_progress = line
                        frames += 1
                        if self.sink:
                            self.sink(frame)
                    elif line.strip() and not (self.parser and self.parser.is_progress_line(line)):
                        tail.append(line)
                    if self.cancel_token.cancelled and not cancelled:
                        cancelled = True
                        self.terminate(process)
                        break
                elif kind == _CANCEL:
                    if not cancelled:
                        cancelled = True
                        self.terminate(process)
                    break
                elif kind == _ERROR:
                    stream_error = payload
                elif kind == _EOF:
                    break

            if self.cancel_token.cancelled and not cancelled:
                cancelled = True
                self.terminate(process)

            if cancelled or stream_error is not None:
                self.terminate(process)
                reader.join(timeout=self.grace_period)
            return_code = process.wait()
        finally:
            self.cancel_token.remove_callback(on_cancel)
            if process.poll() is None:
                self.terminate(process)

        tail_lines = list(tail) or ([last_progress] if last_progress else [])
        elapsed = time.monotonic() - start_time

        if cancelled:
            self.state = ProcessState.CANCELLED
            self.logger.info(f"FFMPEG_END: status=cancelled elapsed={elapsed:.2f}s")
            return RunOutcome(state=self.state, return_code=return_code, tail=tail_lines, frames=frames)

        if stream_error is not None:
            self.state = ProcessState.FAILED
            self.logger.error(f"FFMPEG_END: status=failed stream_error={stream_error} elapsed={elapsed:.2f}s")
            raise ProcessError(
                f"Lost the encoder diagnostic stream: {stream_error}",
                tail=tail_lines,
                return_code=return_code,
            )

        if return_code != 0:
            self.state = ProcessState.FAILED
            self.logger.error(f"FFMPEG_END: status=failed code={return_code} elapsed={elapsed:.2f}s")
            raise ProcessError(
                f"ffmpeg exited with code {return_code}",
                tail=tail_lines,
                return_code=return_code,
            )

        self.state = ProcessState.COMPLETED
        self.logger.info(f"FFMPEG_END: status=completed frames={frames} elapsed={elapsed:.2f}s")
        return RunOutcome(state=self.state, return_code=return_code, tail=tail_lines, frames=frames)
