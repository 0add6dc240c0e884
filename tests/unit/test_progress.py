import pytest
from unittest.mock import MagicMock

from compresso.infrastructure.progress import DEFAULT_PATTERNS, PatternCache, ProgressParser, parse_elapsed

STATS = "frame= {frame} fps={fps} q=28.0 size=    1024kB time={time} bitrate=1677.7kbits/s speed={speed}x"


def _line(seconds: float, fps="30", speed="1.00"):
    h, rest = divmod(seconds, 3600)
    m, s = divmod(rest, 60)
    return STATS.format(frame=int(seconds * 30), fps=fps, time=f"{int(h):02d}:{int(m):02d}:{s:05.2f}", speed=speed)


def test_parse_elapsed_formats():
    assert parse_elapsed("time=01:02:03.50") == pytest.approx(3723.5)
    assert parse_elapsed("out_time_us=5000000") == pytest.approx(5.0)
    assert parse_elapsed("out_time_ms=2500000") == pytest.approx(2.5)
    assert parse_elapsed("Stream mapping:") is None
    assert parse_elapsed("out_time=00:00:05.000000") is None


def test_pattern_cache_is_shared_and_immutable():
    assert isinstance(DEFAULT_PATTERNS, PatternCache)
    assert ProgressParser(10.0).patterns is DEFAULT_PATTERNS
    with pytest.raises(AttributeError):
        DEFAULT_PATTERNS.time = None


def test_frame_fields():
    parser = ProgressParser(total_duration=60.0, source_fps=30.0)
    frame = parser.feed(_line(15, fps="60", speed="2.00"))
    assert frame.elapsed_seconds == pytest.approx(15.0)
    assert frame.percent == pytest.approx(25.0)
    assert frame.fps == pytest.approx(60.0)
    assert frame.speed == pytest.approx(2.0)
    # 45 s of media left at 2x
    assert frame.eta_seconds == pytest.approx(22.5)


def test_non_matching_lines_ignored():
    parser = ProgressParser(60.0)
    assert parser.feed("Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'a.mp4':") is None
    assert parser.feed("") is None


def test_percent_monotonic_and_bounded():
    parser = ProgressParser(total_duration=60.0)
    frames = [parser.feed(_line(s)) for s in range(0, 75, 5)]
    percents = [f.percent for f in frames if f is not None]
    assert percents == sorted(percents)
    assert all(0.0 <= p <= 100.0 for p in percents)
    assert percents[-1] == 100.0
    assert percents.count(100.0) == 1


def test_non_advancing_frames_suppressed():
    parser = ProgressParser(60.0)
    assert parser.feed(_line(10)) is not None
    assert parser.feed(_line(10)) is None
    assert parser.feed(_line(5)) is None
    assert parser.feed(_line(11)).elapsed_seconds == pytest.approx(11.0)


def test_unknown_duration_has_no_percent():
    parser = ProgressParser(total_duration=None)
    frame = parser.feed(_line(3))
    assert frame.percent is None
    assert frame.eta_seconds is None


def test_eta_from_encode_fps_when_no_speed():
    parser = ProgressParser(total_duration=100.0, source_fps=25.0)
    frame = parser.feed("frame=  250 fps= 50 q=28.0 size=  10kB time=00:00:10.00 bitrate=8.0kbits/s")
    # 90 s of media * 25 fps / 50 fps
    assert frame.eta_seconds == pytest.approx(45.0)


def test_eta_from_wall_clock():
    clock = MagicMock(side_effect=[100.0, 110.0])
    parser = ProgressParser(total_duration=100.0, clock=clock)
    frame = parser.feed("time=00:00:25.00")
    # 10 s wall for 25 %, 75 % left
    assert frame.eta_seconds == pytest.approx(30.0)


def test_zero_fps_and_speed_treated_as_unknown():
    parser = ProgressParser(total_duration=60.0, source_fps=30.0, clock=MagicMock(side_effect=[0.0, 0.0]))
    frame = parser.feed("frame=    0 fps=0.0 q=0.0 size=       0kB time=00:00:00.00 bitrate=N/A speed=   0x")
    assert frame.fps is None
    assert frame.speed is None
    assert frame.percent == 0.0
    assert frame.eta_seconds is None




def _block(us: int, state: str = "continue", fps: str = "50.00", speed: str = "2.00x"):
    return [
        "frame=250",
        f"fps={fps}",
        "stream_0_0_q=28.0",
        "bitrate= 100.0kbits/s",
        f"out_time_us={us}",
        f"out_time_ms={us}",
        "out_time=00:00:05.000000",
        f"speed={speed}",
        f"progress={state}",
    ]


def test_progress_block_yields_one_frame_when_closed():
    parser = ProgressParser(total_duration=10.0)
    lines = _block(5_000_000)
    assert [parser.feed(line) for line in lines[:-1]] == [None] * (len(lines) - 1)

    frame = parser.feed(lines[-1])
    assert frame.elapsed_seconds == pytest.approx(5.0)
    assert frame.percent == pytest.approx(50.0)
    assert frame.fps == pytest.approx(50.0)
    assert frame.speed == pytest.approx(2.0)
    assert frame.eta_seconds == pytest.approx(2.5)


def test_progress_blocks_end_at_single_100_percent():
    parser = ProgressParser(total_duration=10.0)
    frames = []
    for us, state in ((0, "continue"), (10_000_000, "continue"), (10_000_000, "end")):
        frames.extend(f for f in map(parser.feed, _block(us, state)) if f is not None)
    assert [f.percent for f in frames] == [0.0, 100.0]


def test_progress_block_without_time_is_ignored():
    parser = ProgressParser(total_duration=10.0)
    assert parser.feed("speed=N/A") is None
    assert parser.feed("progress=continue") is None


def test_is_progress_line():
    parser = ProgressParser(60.0)
    assert parser.is_progress_line("out_time_us=5000000")
    assert parser.is_progress_line("bitrate= 100.0kbits/s")
    assert parser.is_progress_line(_line(5))
    assert not parser.is_progress_line("Conversion failed!")
    assert not parser.is_progress_line("[h264 @ 0x55d] Invalid data found when processing input")
