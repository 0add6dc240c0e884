"""Progress extraction from the encoder's diagnostic stream.

ffmpeg reports progress on stderr either as ``-stats`` lines::

    frame=  150 fps= 30 q=28.0 size=  1024kB time=00:00:05.00 bitrate=1677.7kbits/s speed=1.02x

or, with ``-progress``, as blocks of ``key=value`` lines (``fps=``,
``out_time_us=``, ``speed=``) closed by ``progress=continue`` or ``progress=end``.
A stats line yields a frame on its own; a block yields one frame when it
closes. The compiled patterns live in an immutable :class:`PatternCache`
built once and shared by every parser.
"""
import re
import time
from typing import Callable, Dict, NamedTuple, Optional, Pattern

from compresso.domain.models import ProgressFrame


class PatternCache(NamedTuple):
    time: Pattern
    out_time: Pattern
    fps: Pattern
    speed: Pattern
    key_value: Pattern
    block_end: Pattern

    @classmethod
    def build(cls) -> "PatternCache":
        return cls(
            time=re.compile(r"(?<![\w-])time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)"),
            # ffmpeg's out_time_ms is in microseconds as well
            out_time=re.compile(r"^out_time_(?:us|ms)=(\d+)\s*$"),
            fps=re.compile(r"(?<![\w])fps=\s*(\d+(?:\.\d+)?)"),
            speed=re.compile(r"(?<![\w])speed=\s*(\d+(?:\.\d+)?)x"),
            key_value=re.compile(r"^[a-z0-9_]+=\s*\S*$"),
            block_end=re.compile(r"^progress=(?:continue|end)$"),
        )


DEFAULT_PATTERNS = PatternCache.build()


def parse_elapsed(line: str, patterns: PatternCache = DEFAULT_PATTERNS) -> Optional[float]:
    """Returns the elapsed media time in seconds, or None when the line has none."""
    match = patterns.time.search(line)
    if match:
        hours, minutes, seconds = match.groups()
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    match = patterns.out_time.search(line.strip())
    if match:
        return int(match.group(1)) / 1_000_000
    return None


def _positive(patterns_match) -> Optional[float]:
    if not patterns_match:
        return None
    value = float(patterns_match.group(1))
    return value if value > 0 else None


class ProgressParser:
    """Turns encoder lines into :class:`ProgressFrame` snapshots.

    Only the previous frame, plus the values of a ``-progress`` block still
    being read, is remembered. Lines without progress information are
    ignored. Frames that do not move forward, and any 100 % frame after the
    first, are dropped so consumers see a strictly advancing sequence.
    """

    def __init__(
        self,
        total_duration: Optional[float],
        source_fps: Optional[float] = None,
        patterns: PatternCache = DEFAULT_PATTERNS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total_duration = total_duration if total_duration and total_duration > 0 else None
        self.source_fps = source_fps if source_fps and source_fps > 0 else None
        self.patterns = patterns
        self.clock = clock
        self._started_at = clock()
        self._last_elapsed: Optional[float] = None
        self._last_percent: Optional[float] = None
        self._block: Dict[str, float] = {}

    def is_progress_line(self, line: str) -> bool:
        """True for stats lines and ``-progress`` key=value lines."""
        stripped = line.strip()
        return bool(self.patterns.key_value.match(stripped) or self.patterns.time.search(line))

    def feed(self, line: str) -> Optional[ProgressFrame]:
        stripped = line.strip()
        if self.patterns.block_end.match(stripped):
            block, self._block = self._block, {}
            if "elapsed" not in block:
                return None
            return self._frame(block["elapsed"], block.get("fps"), block.get("speed"))

        # a stats line may look like a single key=value pair, e.g. "time=00:00:01.00"
        if self.patterns.key_value.match(stripped) and not self.patterns.time.search(stripped):
            elapsed = parse_elapsed(stripped, self.patterns)
            if elapsed is not None:
                self._block["elapsed"] = elapsed
            for key, pattern in (("fps", self.patterns.fps), ("speed", self.patterns.speed)):
                value = _positive(pattern.match(stripped))
                if value is not None:
                    self._block[key] = value
            return None

        elapsed = parse_elapsed(line, self.patterns)
        if elapsed is None:
            return None
        fps = _positive(self.patterns.fps.search(line))
        speed = _positive(self.patterns.speed.search(line))
        return self._frame(elapsed, fps, speed)

    def _frame(self, elapsed: float, fps: Optional[float], speed: Optional[float]) -> Optional[ProgressFrame]:
        if self._last_elapsed is not None and elapsed <= self._last_elapsed:
            return None
        percent = self.percent_for(elapsed)
        if percent is not None and percent >= 100.0 and self._last_percent is not None and self._last_percent >= 100.0:
            return None

        self._last_elapsed = elapsed
        self._last_percent = percent
        return ProgressFrame(
            elapsed_seconds=elapsed,
            fps=fps,
            speed=speed,
            percent=percent,
            eta_seconds=self._eta(elapsed, percent, fps, speed),
        )

    def percent_for(self, elapsed: float) -> Optional[float]:
        if self.total_duration is None:
            return None
        return max(0.0, min(100.0, elapsed / self.total_duration * 100.0))

    def _eta(self, elapsed: float, percent: Optional[float], fps: Optional[float], speed: Optional[float]) -> Optional[float]:
        if self.total_duration is None or percent is None:
            return None
        remaining = max(self.total_duration - elapsed, 0.0)
        if remaining == 0.0:
            return 0.0
        if speed:
            return remaining / speed
        if fps and self.source_fps:
            return remaining * self.source_fps / fps
        if percent > 0:
            wall = self.clock() - self._started_at
            return wall * (100.0 - percent) / percent
        return None
