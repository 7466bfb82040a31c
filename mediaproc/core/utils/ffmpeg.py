"""
FFmpeg utility functions with improved error handling and logging.

This module runs FFmpeg as a child process from an explicit argument list
(never through a shell), keeps only a bounded tail of its stderr, enforces
a wall-clock timeout and filters known benign warnings.
"""

import asyncio
import logging
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Patterns for known benign warnings that should be filtered
BENIGN_WARNING_PATTERNS = [
    r"\[av1 @ .*\] Your platform doesn't suppport hardware accelerated AV1 decoding",
    r"\[av1 @ .*\] Failed to get pixel format",
    r"\[av1 @ .*\] Missing Sequence Header",
    r"\[.*\] .* does not support hardware acceleration",
    r"\[.*\] .* hardware acceleration disabled",
]

STDERR_READ_CHUNK = 4096


@dataclass
class FFmpegResult:
    """Exit status and (bounded, filtered) stderr of one FFmpeg invocation."""

    returncode: int
    stderr: str
    duration_seconds: float
    truncated: bool = False


class FFmpegTimeout(Exception):
    """Raised when FFmpeg exceeds its wall-clock budget and was killed."""

    def __init__(self, timeout: float, stderr: str = ""):
        self.timeout = timeout
        self.stderr = stderr
        super().__init__(f"FFmpeg did not finish within {timeout:.0f}s")


def filter_benign_warnings(stderr: str) -> tuple[str, list[str]]:
    """
    Filter out known benign warnings from FFmpeg stderr.

    Args:
        stderr: Raw stderr output from FFmpeg.

    Returns:
        Tuple of (filtered_stderr, filtered_warnings_list).
    """
    lines = stderr.split("\n")
    filtered_lines = []
    filtered_warnings = []

    for line in lines:
        is_benign = False
        for pattern in BENIGN_WARNING_PATTERNS:
            if re.search(pattern, line, re.IGNORECASE):
                is_benign = True
                filtered_warnings.append(line)
                break

        if not is_benign:
            filtered_lines.append(line)

    return "\n".join(filtered_lines), filtered_warnings


def probe_ffmpeg(binary: str, timeout: float = 10.0) -> tuple[bool, Optional[str], str]:
    """
    Check that ``binary`` exists and runs.

    Returns:
        Tuple of (available, version_line, detail).
    """
    try:
        result = subprocess.run(
            [binary, "-version"],
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        return False, None, f"{binary} not found"
    except PermissionError:
        return False, None, f"{binary} is not executable"
    except subprocess.TimeoutExpired:
        return False, None, f"{binary} -version timed out"
    except OSError as e:
        return False, None, f"{binary} could not be started: {e}"

    if result.returncode != 0:
        return False, None, f"{binary} -version exited with code {result.returncode}"

    first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
    return True, first_line or None, "ok"


async def _drain_tail(stream: asyncio.StreamReader, limit: int) -> tuple[bytes, bool]:
    """Read a stream to EOF, keeping only its last ``limit`` bytes."""
    buffer = bytearray()
    truncated = False
    while True:
        chunk = await stream.read(STDERR_READ_CHUNK)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > limit:
            del buffer[: len(buffer) - limit]
            truncated = True
    return bytes(buffer), truncated


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


async def run_ffmpeg(
    cmd: list[str],
    timeout: float,
    stderr_limit: int = 64 * 1024,
    suppress_warnings: bool = True,
) -> FFmpegResult:
    """
    Run FFmpeg command with a timeout and bounded stderr capture.

    Args:
        cmd: FFmpeg command as list of arguments.
        timeout: Wall-clock limit in seconds; the process is killed past it.
        stderr_limit: Maximum number of stderr bytes retained.
        suppress_warnings: If True, drop known benign warnings from stderr.

    Returns:
        FFmpegResult with the exit code. A non-zero exit is not raised here.

    Raises:
        FFmpegTimeout: If FFmpeg runs past ``timeout``.
        FileNotFoundError / PermissionError: If the executable cannot be started.
    """
    started = time.monotonic()
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    reader = asyncio.ensure_future(_drain_tail(process.stderr, stderr_limit))

    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        raw, _ = await reader
        logger.error("FFmpeg timed out after %.1fs, killed pid %s", timeout, process.pid)
        raise FFmpegTimeout(timeout, raw.decode("utf-8", errors="replace"))
    except BaseException:
        # Cancellation: never leave the child running.
        reader.cancel()
        await _terminate(process)
        raise

    raw, truncated = await reader
    stderr = raw.decode("utf-8", errors="replace")

    # Filter stderr for benign warnings
    if suppress_warnings and stderr:
        stderr, warnings = filter_benign_warnings(stderr)
        if warnings:
            logger.debug(f"Filtered {len(warnings)} benign FFmpeg warnings")

    return FFmpegResult(
        returncode=process.returncode,
        stderr=stderr,
        duration_seconds=time.monotonic() - started,
        truncated=truncated,
    )
