"""FFmpeg HLS encoder.

Encodes the whole quality ladder in one FFmpeg invocation, so the attempt
either produces every rendition or fails as a unit. Output layout in the
work directory::

    master.m3u8
    stream_{i}.m3u8
    segment_{i}_{NNN}.ts
"""

import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional, Protocol

from app.modules.transcoding.errors import (
    ConfigurationError,
    EncoderExecutionFailed,
    EncoderUnavailable,
)
from app.modules.transcoding.ladder import Variant, format_bitrate

logger = logging.getLogger(__name__)

MASTER_PLAYLIST = "master.m3u8"
VARIANT_PLAYLIST_PATTERN = "stream_%v.m3u8"
SEGMENT_PATTERN = "segment_%v_%03d.ts"


@dataclass
class EncodeOutcome:
    """Result of an encode operation."""
    success: bool
    work_dir: str
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def failure(cls, work_dir: str, error: type, message: str) -> "EncodeOutcome":
        return cls(
            success=False,
            work_dir=work_dir,
            error_message=message,
            error_code=error.error_code,
        )


class Encoder(Protocol):
    def encode(
        self,
        source_path: str,
        work_dir: str,
        ladder: Sequence[Variant],
        timeout: Optional[float] = None,
    ) -> EncodeOutcome:
        ...


class FFmpegEncoder:
    """FFmpeg-based multi-rendition HLS encoder."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        segment_duration: int = 10,
        keyframe_interval: int = 48,
        preset: str = "fast",
    ):
        """Initialize encoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            segment_duration: Target HLS segment length in seconds
            keyframe_interval: GOP size in frames
            preset: x264 preset
        """
        self.ffmpeg_path = ffmpeg_path
        self.segment_duration = segment_duration
        self.keyframe_interval = keyframe_interval
        self.preset = preset

    def build_command(
        self,
        source_path: str,
        work_dir: str,
        ladder: Sequence[Variant],
    ) -> list[str]:
        """Build the FFmpeg command for an HLS ladder.

        Args:
            source_path: Input video path
            work_dir: Directory that receives playlists and segments
            ladder: Variants in stream index order

        Returns:
            FFmpeg command as list of arguments
        """
        if not ladder:
            raise ConfigurationError("Cannot encode an empty quality ladder")

        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", source_path,
            "-preset", self.preset,
            "-g", str(self.keyframe_interval),
            # Segment boundaries must fall on keyframes
            "-sc_threshold", "0",
        ]

        for i, variant in enumerate(ladder):
            cmd.extend([
                "-map", "0:v:0", "-map", "0:a:0",
                f"-c:v:{i}", "libx264",
                f"-b:v:{i}", format_bitrate(variant.video_bitrate),
                f"-maxrate:v:{i}", format_bitrate(variant.max_bitrate),
                f"-bufsize:v:{i}", format_bitrate(variant.buffer_size),
                f"-c:a:{i}", "aac",
                f"-b:a:{i}", format_bitrate(variant.audio_bitrate),
                f"-s:v:{i}", variant.resolution,
                f"-r:v:{i}", str(variant.frame_rate),
            ])

        stream_map = " ".join(f"v:{i},a:{i}" for i in range(len(ladder)))
        cmd.extend([
            "-f", "hls",
            "-hls_time", str(self.segment_duration),
            "-hls_playlist_type", "vod",
            "-hls_flags", "independent_segments",
            "-hls_segment_type", "mpegts",
            "-hls_segment_filename", os.path.join(work_dir, SEGMENT_PATTERN),
            "-master_pl_name", MASTER_PLAYLIST,
            "-var_stream_map", stream_map,
            os.path.join(work_dir, VARIANT_PLAYLIST_PATTERN),
        ])
        return cmd

    def _binary_available(self) -> bool:
        if os.sep in self.ffmpeg_path or (os.altsep and os.altsep in self.ffmpeg_path):
            return os.path.isfile(self.ffmpeg_path) and os.access(self.ffmpeg_path, os.X_OK)
        return shutil.which(self.ffmpeg_path) is not None

    def encode(
        self,
        source_path: str,
        work_dir: str,
        ladder: Sequence[Variant],
        timeout: Optional[float] = None,
    ) -> EncodeOutcome:
        """Run FFmpeg once for the whole ladder.

        Args:
            source_path: Input video path
            work_dir: Output directory, created if missing
            ladder: Variants in stream index order
            timeout: Seconds before FFmpeg is killed

        Returns:
            EncodeOutcome with FFmpeg's stderr as the message on failure

        Raises:
            subprocess.TimeoutExpired: If FFmpeg runs past ``timeout``
        """
        if not self._binary_available():
            return EncodeOutcome.failure(
                work_dir,
                EncoderUnavailable,
                f"FFmpeg binary not found or not executable: {self.ffmpeg_path}",
            )

        cmd = self.build_command(source_path, work_dir, ladder)
        os.makedirs(work_dir, exist_ok=True)
        logger.debug("Running FFmpeg: %s", " ".join(cmd))

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except OSError as e:
            return EncodeOutcome.failure(
                work_dir, EncoderUnavailable, f"FFmpeg could not be started: {e}"
            )

        if result.returncode != 0:
            message = (result.stderr or "").strip()
            if not message:
                message = f"FFmpeg exited with code {result.returncode}"
            return EncodeOutcome.failure(work_dir, EncoderExecutionFailed, message)

        if not os.path.isfile(os.path.join(work_dir, MASTER_PLAYLIST)):
            return EncodeOutcome.failure(
                work_dir,
                EncoderExecutionFailed,
                f"FFmpeg finished but produced no {MASTER_PLAYLIST}",
            )

        return EncodeOutcome(success=True, work_dir=work_dir)

    def is_available(self) -> bool:
        """Check that ffmpeg runs at all."""
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0
