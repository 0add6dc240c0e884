import json
import subprocess
import pytest
from pathlib import Path
from unittest.mock import patch

from compresso.domain.errors import ValidationError
from compresso.domain.models import VideoMetadata
from compresso.infrastructure.ffprobe import FFprobeAdapter


def _probe_output(**stream_overrides):
    stream = {
        "index": 0,
        "codec_name": "h264",
        "codec_type": "video",
        "width": 1920,
        "height": 1080,
        "r_frame_rate": "30/1",
        "avg_frame_rate": "30000/1001",
    }
    stream.update(stream_overrides)
    return {
        "streams": [{"index": 1, "codec_type": "audio", "codec_name": "aac"}, stream],
        "format": {"duration": "10.0", "bit_rate": "5000000"},
    }


def test_ffprobe_parse_streams():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(_probe_output())
        mock_run.return_value.returncode = 0

        adapter = FFprobeAdapter(ffprobe_path="/opt/ffprobe")
        info = adapter.get_stream_info(Path("test.mp4"))

        assert mock_run.call_args.args[0][0] == "/opt/ffprobe"
        assert info["width"] == 1920
        assert info["height"] == 1080
        assert info["codec"] == "h264"
        assert info["fps"] == pytest.approx(29.97)
        assert info["duration"] == 10.0
        assert info["bitrate_kbps"] == 5000.0


def test_probe_returns_metadata():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(_probe_output(avg_frame_rate="0/0"))
        mock_run.return_value.returncode = 0
        metadata = FFprobeAdapter().probe(Path("test.mp4"))

    assert isinstance(metadata, VideoMetadata)
    # falls back to r_frame_rate
    assert metadata.fps == 30.0
    assert metadata.duration == 10.0


def test_ffprobe_error():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.returncode = 1
        mock_run.return_value.stderr = "moov atom not found"

        adapter = FFprobeAdapter()
        with pytest.raises(ValidationError) as exc:
            adapter.get_stream_info(Path("test.mp4"))
        assert "moov atom not found" in exc.value.message


def test_ffprobe_no_video_stream():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps({"streams": [{"codec_type": "audio"}], "format": {}})
        mock_run.return_value.returncode = 0
        with pytest.raises(ValidationError):
            FFprobeAdapter().get_stream_info(Path("song.mp4"))


def test_ffprobe_invalid_json():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = "not json"
        mock_run.return_value.returncode = 0
        with pytest.raises(ValidationError):
            FFprobeAdapter().get_stream_info(Path("test.mp4"))


def test_ffprobe_timeout():
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=1)):
        with pytest.raises(ValidationError):
            FFprobeAdapter(timeout=1).get_stream_info(Path("test.mp4"))


def test_ffprobe_missing_duration():
    data = _probe_output()
    data["format"] = {"duration": "N/A"}
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(data)
        mock_run.return_value.returncode = 0
        info = FFprobeAdapter().get_stream_info(Path("live.ts"))
    assert info["duration"] is None
    assert info["bitrate_kbps"] is None
