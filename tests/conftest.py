import os
import stat
import sys
import pytest
import yaml
from pathlib import Path
from unittest.mock import MagicMock

from compresso.config.models import AppConfig
from compresso.domain.models import VideoMetadata

# Stand-in for ffmpeg: prints -progress blocks on stderr and writes an
# output half the size of the input. FAKE_ENCODER_MODE selects ok/fail/hang;
# inputs named *broken* always fail.
FAKE_ENCODER = '''#!{python}
import os
import signal
import sys
import time

args = sys.argv[1:]
if "-version" in args:
    print("ffmpeg version 6.1-fake Copyright (c) 2000-2024 the FFmpeg developers")
    sys.exit(0)

src = args[args.index("-i") + 1]
dst = args[-1]
mode = os.environ.get("FAKE_ENCODER_MODE", "ok")
if "broken" in os.path.basename(src):
    mode = "fail"

if mode == "fail":
    sys.stderr.write("[h264 @ 0x55d] Invalid data found when processing input\\n")
    sys.stderr.write("Conversion failed!\\n")
    sys.exit(1)

def block(second, state):
    sys.stderr.write(
        "frame=%d\\nfps=250.00\\nstream_0_0_q=28.0\\nbitrate= 100.0kbits/s\\ntotal_size=%d\\n"
        "out_time_us=%d\\nout_time_ms=%d\\nout_time=00:%02d:%02d.000000\\n"
        "dup_frames=0\\ndrop_frames=0\\nspeed=10.0x\\nprogress=%s\\n"
        % (second * 25, second * 1024, second * 1000000, second * 1000000, second // 60, second % 60, state)
    )
    sys.stderr.flush()


if mode == "hang":
    if os.environ.get("FAKE_ENCODER_IGNORE_TERM"):
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    block(1, "continue")
    time.sleep(60)
    sys.exit(0)

for second in range(0, 61, 10):
    block(second, "continue")
# the closing block repeats the final position
block(60, "end")

with open(dst, "wb") as f:
    f.write(b"\\0" * max(1, os.path.getsize(src) // 2))
sys.exit(0)
'''


@pytest.fixture
def fake_encoder(tmp_path):
    """Executable fake ffmpeg in its own directory."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "ffmpeg"
    script.write_text(FAKE_ENCODER.format(python=sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def encoder_mode(monkeypatch):
    """Selects the fake encoder behaviour for subprocesses started by the test."""

    def _set(mode: str, ignore_term: bool = False):
        monkeypatch.setenv("FAKE_ENCODER_MODE", mode)
        if ignore_term:
            monkeypatch.setenv("FAKE_ENCODER_IGNORE_TERM", "1")
        else:
            monkeypatch.delenv("FAKE_ENCODER_IGNORE_TERM", raising=False)

    _set("ok")
    return _set


@pytest.fixture
def videos(tmp_path):
    """Factory creating dummy video files of a given size."""
    video_dir = tmp_path / "videos"
    video_dir.mkdir()

    def _make(name: str, size: int = 100_000) -> Path:
        path = video_dir / name
        path.write_bytes(os.urandom(64) + b"\0" * (size - 64))
        return path

    return _make


@pytest.fixture
def metadata():
    return VideoMetadata(width=1920, height=1080, codec="h264", fps=25.0, duration=60.0, bitrate_kbps=5000.0)


@pytest.fixture
def fake_probe(metadata):
    """probe_factory for JobRunner that never calls ffprobe."""
    adapter = MagicMock()
    adapter.probe.return_value = metadata
    return MagicMock(return_value=adapter)


@pytest.fixture
def app_config(fake_encoder):
    config = AppConfig()
    config.encoder.ffmpeg_path = str(fake_encoder)
    config.encoder.grace_period_seconds = 2.0
    return config


@pytest.fixture
def config_yaml(tmp_path, fake_encoder):
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "compresso.yaml"

    content = {
        "general": {
            "extensions": ["mp4", "MOV"],
            "recursive": False,
        },
        "encoder": {
            "ffmpeg_path": str(fake_encoder),
            "grace_period_seconds": 2,
        },
        "defaults": {
            "quality": 70,
            "preset": "ironclad",
        },
    }

    with open(conf_file, "w") as f:
        yaml.dump(content, f)

    return conf_file


FAKE_PROBE = '''#!{python}
import json
print(json.dumps({{
    "streams": [{{"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720,
                  "avg_frame_rate": "25/1", "r_frame_rate": "25/1"}}],
    "format": {{"duration": "60.000000", "bit_rate": "2500000"}},
}}))
'''


@pytest.fixture
def fake_ffprobe(fake_encoder):
    """Executable fake ffprobe next to the fake encoder."""
    script = fake_encoder.parent / "ffprobe"
    script.write_text(FAKE_PROBE.format(python=sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script
