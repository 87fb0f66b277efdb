"""FFmpeg argument vectors for HLS sessions and still-frame capture.

Single source of truth for every FFmpeg invocation the service makes.

Pipelines:
    Session:  source URL -> FFmpeg (libx264/aac, zerolatency) -> HLS playlist
              + rolling numbered .ts segments in the session work directory
    Capture:  session playlist -> FFmpeg -> one high-quality JPEG
"""
from __future__ import annotations

from pathlib import Path
from typing import Final

# ============================================================================
# HLS Layout
# ============================================================================

HLS_SEGMENT_SECONDS: Final[int] = 2
"""Target duration of each HLS segment."""

HLS_LIST_SIZE: Final[int] = 3
"""Segments listed in the rolling playlist; older ones are deleted."""

MANIFEST_NAME: Final[str] = "playlist.m3u8"
"""Playlist file name inside a session work directory."""

SEGMENT_PATTERN: Final[str] = "stream_%03d.ts"
"""Segment file name template (FFmpeg printf syntax)."""

# ============================================================================
# Input Parameters
# ============================================================================

BASE_INPUT_PARAMS: Final[list[str]] = [
    '-analyzeduration', '30000000',
    '-probesize', '50000000',
    '-max_delay', '500000',
]
"""Generous probing so slow or flaky sources still open."""

RTSP_INPUT_PARAMS: Final[list[str]] = [
    '-rtsp_transport', 'tcp',
]
"""RTSP-only options; FFmpeg rejects them for other protocols."""

# ============================================================================
# Output Parameters
# ============================================================================

ENCODER_PARAMS: Final[list[str]] = [
    '-c:v', 'libx264',
    '-c:a', 'aac',
    '-preset', 'veryfast',
    '-tune', 'zerolatency',
    '-sc_threshold', '0',
]
"""Low-latency H.264/AAC encoding."""

CAPTURE_PARAMS: Final[list[str]] = [
    '-frames:v', '1',
    '-q:v', '2',
]
"""Exactly one still frame at high JPEG quality."""


# ============================================================================
# Command Builders
# ============================================================================

def input_params_for(source_url: str) -> list[str]:
    """Input options appropriate for the source protocol."""
    params = list(BASE_INPUT_PARAMS)
    if source_url.lower().startswith(("rtsp://", "rtsps://")):
        params = list(RTSP_INPUT_PARAMS) + params
    return params


def build_hls_command(
    source_url: str,
    work_dir: Path,
    segment_seconds: int = HLS_SEGMENT_SECONDS,
    list_size: int = HLS_LIST_SIZE,
    binary: str = "ffmpeg"
) -> list[str]:
    """Build the FFmpeg command that turns a source into a rolling HLS stream.

    Command structure:
    1. Quiet banner/log level
    2. Input options (+ TCP transport for RTSP)
    3. Input (-i <source>)
    4. Encoder tuning
    5. HLS muxer with a rolling window and forced keyframes per segment
    6. Playlist path (last argument)

    Example:
        >>> cmd = build_hls_command("rtsp://cam/stream", Path("/tmp/s1"))
        >>> cmd[-1]
        '/tmp/s1/playlist.m3u8'
    """
    work_dir = Path(work_dir)
    cmd = [binary, '-hide_banner', '-loglevel', 'warning', '-nostdin']
    cmd.extend(input_params_for(source_url))
    cmd.extend(['-i', source_url])
    cmd.extend(ENCODER_PARAMS)
    cmd.extend([
        '-force_key_frames', f'expr:gte(t,n_forced*{segment_seconds})',
        '-f', 'hls',
        '-hls_time', str(segment_seconds),
        '-hls_list_size', str(list_size),
        '-hls_flags', 'delete_segments',
        '-hls_segment_filename', str(work_dir / SEGMENT_PATTERN),
        '-start_number', '0',
        str(work_dir / MANIFEST_NAME),
    ])
    return cmd


def build_capture_command(
    manifest_path: Path,
    output_path: Path,
    binary: str = "ffmpeg"
) -> list[str]:
    """Build the one-shot FFmpeg command that grabs a still from a playlist."""
    return [
        binary, '-hide_banner', '-loglevel', 'error', '-nostdin', '-y',
        '-i', str(manifest_path),
        *CAPTURE_PARAMS,
        str(output_path),
    ]
