"""Quality ladder for adaptive bitrate output.

Turns the configured preset table and the list of enabled quality names into
an ordered list of variants. The position of a variant in that list is its
stream index: FFmpeg maps ``v:i``/``a:i`` by it and names the output
``stream_{i}.m3u8`` and ``segment_{i}_NNN.ts``, so the configured order is
kept exactly.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

from app.modules.transcoding.errors import ConfigurationError

DEFAULT_FRAME_RATE = 30

_RESOLUTION_RE = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")
_BITRATE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)\s*$")
_BITRATE_UNITS = {"": 1, "k": 1_000, "m": 1_000_000}


@dataclass(frozen=True)
class Variant:
    """One rendition of the ladder. Bitrates are in bits per second."""

    index: int
    name: str
    width: int
    height: int
    video_bitrate: int
    audio_bitrate: int
    max_bitrate: int
    buffer_size: int
    frame_rate: int = DEFAULT_FRAME_RATE

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


def parse_bitrate(value: Union[str, int]) -> int:
    """Parse a bitrate such as ``"2800k"``, ``"5M"`` or ``128000`` into bps.

    Raises:
        ConfigurationError: If the value is malformed or not positive
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid bitrate: {value!r}")
    if isinstance(value, int):
        bps = value
    else:
        match = _BITRATE_RE.match(str(value))
        if not match:
            raise ConfigurationError(f"Invalid bitrate: {value!r}")
        number, unit = match.groups()
        bps = int(float(number) * _BITRATE_UNITS[unit.lower()])
    if bps <= 0:
        raise ConfigurationError(f"Bitrate must be positive: {value!r}")
    return bps


def format_bitrate(bps: int) -> str:
    """Render a bitrate for the FFmpeg command line."""
    if bps % 1000 == 0:
        return f"{bps // 1000}k"
    return str(bps)


def parse_resolution(value: str) -> tuple[int, int]:
    """Parse ``"1280x720"`` into ``(1280, 720)``."""
    match = _RESOLUTION_RE.match(str(value))
    if not match:
        raise ConfigurationError(f"Invalid resolution: {value!r}")
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        raise ConfigurationError(f"Resolution must be positive: {value!r}")
    return width, height


def _parse_frame_rate(value: Any) -> int:
    try:
        frame_rate = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid frame rate: {value!r}") from None
    if frame_rate <= 0:
        raise ConfigurationError(f"Frame rate must be positive: {value!r}")
    return frame_rate


def build_variant(index: int, name: str, preset: Mapping[str, Any]) -> Variant:
    """Build a single variant from its preset entry.

    Args:
        index: Zero-based stream index
        name: Quality name, e.g. ``"720p"``
        preset: Mapping with ``resolution``, ``video_bitrate`` and
            ``audio_bitrate``, optionally ``max_bitrate``, ``buffer_size``
            and ``frame_rate``

    Returns:
        Variant with defaults applied
    """
    for key in ("resolution", "video_bitrate", "audio_bitrate"):
        if key not in preset:
            raise ConfigurationError(f"Quality preset {name!r} is missing {key!r}")

    width, height = parse_resolution(preset["resolution"])
    video_bitrate = parse_bitrate(preset["video_bitrate"])
    audio_bitrate = parse_bitrate(preset["audio_bitrate"])

    if preset.get("max_bitrate") is not None:
        max_bitrate = parse_bitrate(preset["max_bitrate"])
    else:
        # 10% headroom, floored to a whole kbps
        max_bitrate = (video_bitrate * 11 // 10) // 1000 * 1000 or video_bitrate

    if preset.get("buffer_size") is not None:
        buffer_size = parse_bitrate(preset["buffer_size"])
    else:
        buffer_size = video_bitrate * 2

    frame_rate = _parse_frame_rate(preset.get("frame_rate", DEFAULT_FRAME_RATE))

    return Variant(
        index=index,
        name=name,
        width=width,
        height=height,
        video_bitrate=video_bitrate,
        audio_bitrate=audio_bitrate,
        max_bitrate=max_bitrate,
        buffer_size=buffer_size,
        frame_rate=frame_rate,
    )


def build_ladder(
    enabled_qualities: Sequence[str],
    presets: Mapping[str, Mapping[str, Any]],
) -> list[Variant]:
    """Build the ordered quality ladder.

    Args:
        enabled_qualities: Quality names in the order they should be encoded
        presets: Table of quality name to preset values

    Returns:
        Variants indexed 0..n-1 in the configured order

    Raises:
        ConfigurationError: On an empty list, an unknown or duplicate name,
            or a malformed preset
    """
    if not enabled_qualities:
        raise ConfigurationError("At least one quality must be enabled")

    ladder: list[Variant] = []
    seen: set[str] = set()
    for name in enabled_qualities:
        if name in seen:
            raise ConfigurationError(f"Quality {name!r} is enabled more than once")
        if name not in presets:
            raise ConfigurationError(
                f"Unknown quality {name!r}; available: {', '.join(presets)}"
            )
        seen.add(name)
        ladder.append(build_variant(len(ladder), name, presets[name]))
    return ladder
