"""Best-effort source metadata probing with ffprobe.

Probing never fails a job: every error condition degrades to
``VideoMetadata.empty()`` and is logged as ``ProbeIncomplete``.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Protocol

from app.core.logging import log_warning
from app.modules.transcoding.errors import ProbeIncomplete

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoMetadata:
    """Probed properties of a source file. Unknown values are None."""

    duration: Optional[int] = None  # seconds
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None
    bitrate: Optional[int] = None  # bps

    @classmethod
    def empty(cls) -> "VideoMetadata":
        return cls()

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.duration, self.width, self.height, self.codec, self.bitrate)
        )


class Prober(Protocol):
    def probe(self, source_path: str) -> VideoMetadata:
        ...


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _round_duration(value: Any) -> Optional[int]:
    try:
        seconds = Decimal(str(value))
    except InvalidOperation:
        return None
    if not seconds.is_finite() or seconds < 0:
        return None
    # Half-up: 10.5 -> 11 (round() would give 10)
    return int(seconds.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def parse_probe_output(data: dict) -> VideoMetadata:
    """Extract metadata from ffprobe's JSON output.

    Args:
        data: Parsed output of ``ffprobe -show_format -show_streams``

    Returns:
        Metadata from the first video stream and the container, or an empty
        result if there is no video stream
    """
    streams = data.get("streams") or []
    video_stream = next(
        (s for s in streams if isinstance(s, dict) and s.get("codec_type") == "video"),
        None,
    )
    if video_stream is None:
        return VideoMetadata.empty()

    fmt = data.get("format") or {}
    bitrate = _to_int(fmt.get("bit_rate"))
    if bitrate is None:
        bitrate = _to_int(video_stream.get("bit_rate"))

    return VideoMetadata(
        duration=_round_duration(fmt.get("duration")),
        width=_to_int(video_stream.get("width")),
        height=_to_int(video_stream.get("height")),
        codec=video_stream.get("codec_name"),
        bitrate=bitrate,
    )


class FFprobeProber:
    """Prober backed by the ffprobe binary."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: Optional[float] = 60.0):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_command(self, source_path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            source_path,
        ]

    def probe(self, source_path: str) -> VideoMetadata:
        """Probe a source file, returning empty metadata on any failure."""
        try:
            result = subprocess.run(
                self.build_command(source_path),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return self._incomplete(source_path, f"ffprobe could not run: {e}")

        if result.returncode != 0:
            return self._incomplete(
                source_path, f"ffprobe exited with code {result.returncode}"
            )

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            return self._incomplete(source_path, f"Unparsable ffprobe output: {e}")
        if not isinstance(data, dict):
            return self._incomplete(source_path, "Unexpected ffprobe output")

        metadata = parse_probe_output(data)
        if metadata.is_empty:
            return self._incomplete(source_path, "No video stream found")
        return metadata

    def _incomplete(self, source_path: str, reason: str) -> VideoMetadata:
        log_warning(
            logger,
            f"Metadata probe incomplete: {reason}",
            source_path=source_path,
            error_code=ProbeIncomplete.error_code,
        )
        return VideoMetadata.empty()
