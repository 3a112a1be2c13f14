"""HLS playlist rewriting.

FFmpeg writes playlists that reference sibling files by bare name. For local
serving those references become absolute API URLs::

    stream_0.m3u8        -> {base}/videos/{job_id}/hls/stream_0.m3u8
    segment_0_000.ts     -> {base}/videos/{job_id}/hls/segment_0_000.ts

Only lines that are exactly a generated file name are touched. Tags,
comments, blank lines and line endings are kept byte for byte, and an
already rewritten line no longer matches, so rewriting twice is a no-op.
"""

import os
import re

MASTER_PLAYLIST = "master.m3u8"

VARIANT_PLAYLIST_RE = re.compile(r"^stream_\d+\.m3u8$")
SEGMENT_RE = re.compile(r"^segment_\d+_\d+\.ts$")


def hls_base_url(service_base_url: str, api_prefix: str, job_id: str) -> str:
    """Get the URL directory that serves a job's HLS files."""
    return f"{service_base_url.rstrip('/')}{api_prefix}/videos/{job_id}/hls"


def _rewrite_lines(text: str, pattern: re.Pattern, base_url: str) -> str:
    base_url = base_url.rstrip("/")
    out = []
    for line in text.splitlines(keepends=True):
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        if pattern.match(body):
            out.append(f"{base_url}/{body}{ending}")
        else:
            out.append(line)
    return "".join(out)


def rewrite_master(text: str, base_url: str) -> str:
    """Rewrite variant playlist references in a master playlist."""
    return _rewrite_lines(text, VARIANT_PLAYLIST_RE, base_url)


def rewrite_variant(text: str, base_url: str) -> str:
    """Rewrite segment references in a variant playlist."""
    return _rewrite_lines(text, SEGMENT_RE, base_url)


def _rewrite_file(path: str, rewrite, base_url: str) -> None:
    # newline="" keeps CRLF/LF exactly as FFmpeg wrote them
    with open(path, encoding="utf-8", newline="") as f:
        text = f.read()
    rewritten = rewrite(text, base_url)
    if rewritten != text:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(rewritten)


def rewrite_playlists(work_dir: str, base_url: str) -> list[str]:
    """Rewrite the master and every variant playlist in a directory in place.

    Args:
        work_dir: Directory produced by the encoder
        base_url: URL directory the files will be served from

    Returns:
        Names of the playlists that were processed

    Raises:
        OSError: If a playlist cannot be read or written
    """
    processed = []
    _rewrite_file(os.path.join(work_dir, MASTER_PLAYLIST), rewrite_master, base_url)
    processed.append(MASTER_PLAYLIST)

    for name in sorted(os.listdir(work_dir)):
        if VARIANT_PLAYLIST_RE.match(name):
            _rewrite_file(os.path.join(work_dir, name), rewrite_variant, base_url)
            processed.append(name)
    return processed
