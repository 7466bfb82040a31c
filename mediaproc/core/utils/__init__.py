"""
Core utility modules for FFmpeg execution and identifiers.
"""

from mediaproc.core.utils.ffmpeg import (
    FFmpegResult,
    FFmpegTimeout,
    filter_benign_warnings,
    probe_ffmpeg,
    run_ffmpeg,
)
from mediaproc.core.utils.ids import generate_request_id, generate_run_id, sanitize_filename

__all__ = [
    "FFmpegResult",
    "FFmpegTimeout",
    "filter_benign_warnings",
    "probe_ffmpeg",
    "run_ffmpeg",
    "generate_request_id",
    "generate_run_id",
    "sanitize_filename",
]
