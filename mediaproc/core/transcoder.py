"""
Transcoder: turns a TransformSpec into an FFmpeg argument list and runs it.

Styles are an explicit, enumerable mapping to video filters. Unknown style
names fall back to ``DEFAULT_STYLE``; explicit filter expressions and extra
output options are checked before anything runs and rejected with
``invalidArguments`` when malformed.
"""

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from mediaproc.config import Settings
from mediaproc.core.pipeline.errors import TranscodeError, TranscodeReason
from mediaproc.core.pipeline.models import TranscodeOutcome, TransformSpec
from mediaproc.core.utils.ffmpeg import FFmpegTimeout, probe_ffmpeg, run_ffmpeg

logger = logging.getLogger(__name__)

DEFAULT_STYLE = "original"

STYLE_FILTERS: Dict[str, Optional[str]] = {
    "original": None,
    "vertical": "scale=-2:1920,crop=1080:1920",
    "square": "scale=1080:1080:force_original_aspect_ratio=increase,crop=1080:1080",
    "split": (
        "scale=1920:-2,split=2[full][full2];"
        "[full]crop=910:1080:0:0[left];"
        "[full2]crop=960:1080:960:0[right];"
        "[left]scale=1080:-2,crop=1080:960[left_scaled];"
        "[right]scale=1080:-2,crop=1080:960[right_scaled];"
        "[left_scaled][right_scaled]vstack=inputs=2"
    ),
    "left_focus": (
        "scale=1920:-2,"
        "crop=910:1080:0:0,"
        "scale=1080:1920:force_original_aspect_ratio=decrease,"
        "pad=1080:1920:(ow-iw)/2:(oh-ih)/2"
    ),
    "right_focus": (
        "scale=1920:-2,"
        "crop=960:1080:960:0,"
        "scale=1080:1920:force_original_aspect_ratio=decrease,"
        "pad=1080:1920:(ow-iw)/2:(oh-ih)/2"
    ),
}

AVAILABLE_STYLES = list(STYLE_FILTERS)

# Encoder settings per output container
H264_AAC = ["-c:v", "libx264", "-preset", "fast", "-crf", "18", "-c:a", "aac", "-b:a", "128k"]
CONTAINER_ENCODING: Dict[str, List[str]] = {
    ".mp4": H264_AAC + ["-movflags", "+faststart"],
    ".mov": H264_AAC + ["-movflags", "+faststart"],
    ".m4v": H264_AAC + ["-movflags", "+faststart"],
    ".mkv": H264_AAC,
    ".ts": H264_AAC,
    ".webm": ["-c:v", "libvpx-vp9", "-crf", "32", "-b:v", "0", "-c:a", "libopus", "-b:a", "128k"],
    ".mp3": ["-vn", "-c:a", "libmp3lame", "-b:a", "192k"],
    ".m4a": ["-vn", "-c:a", "aac", "-b:a", "128k"],
    ".gif": [],
}
AUDIO_ONLY_CONTAINERS = {".mp3", ".m4a"}

_DURATION = r"^(\d+(\.\d+)?|\d{1,2}:\d{2}:\d{2}(\.\d+)?)$"
_BITRATE = r"^\d+[kKmM]?$"
_CODEC = r"^[A-Za-z0-9_-]{1,32}$"

# Extra output options callers may pass, with the shape their value must have
ALLOWED_OUTPUT_OPTIONS: Dict[str, str] = {
    "-c:v": _CODEC,
    "-c:a": _CODEC,
    "-crf": r"^\d{1,2}$",
    "-preset": r"^(ultrafast|superfast|veryfast|faster|fast|medium|slow|slower|veryslow)$",
    "-b:v": _BITRATE,
    "-b:a": _BITRATE,
    "-r": r"^\d+(\.\d+)?(/\d+)?$",
    "-ar": r"^\d{4,6}$",
    "-ac": r"^[1-8]$",
    "-t": _DURATION,
    "-ss": _DURATION,
    "-pix_fmt": r"^[a-z0-9_]{1,16}$",
    "-profile:v": r"^[a-z0-9]{1,16}$",
    "-movflags": r"^[+-]?[a-z_]+([+-][a-z_]+)*$",
}
ALLOWED_OUTPUT_FLAGS = {"-an", "-vn", "-sn"}

MAX_FILTER_LENGTH = 4096
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_BRACKETS = {"]": "[", ")": "("}

# Filters an explicit expression may use. Source filters (movie, amovie,
# sendcmd, subtitles, ...) open arbitrary paths and are not listed.
ALLOWED_FILTERS = frozenset({
    "blend", "boxblur", "chromakey", "colorbalance", "colorchannelmixer",
    "colorkey", "copy", "crop", "curves", "deflicker", "drawbox", "drawgrid",
    "drawtext", "edgedetect", "eq", "fade", "format", "fps", "gblur",
    "hflip", "hqdn3d", "hstack", "hue", "lut", "lutrgb", "lutyuv", "negate",
    "nlmeans", "null", "overlay", "pad", "reverse", "rotate", "scale",
    "select", "setdar", "setpts", "setsar", "smartblur", "split", "tpad",
    "transpose", "trim", "unsharp", "vflip", "vignette", "vstack", "xstack",
    "yadif", "zoompan",
})
# Options of allowed filters that read from or write to the filesystem
FILE_OPTIONS = frozenset({"file", "filename", "fontfile", "psfile", "stats_file", "textfile"})
_FILTER_NAME = re.compile(r"^(?:\[[^\]]*\]\s*)*([A-Za-z0-9_]+)(?:@[A-Za-z0-9_]+)?")


def _split_unquoted(text: str, separators: str) -> List[str]:
    """Split on separators outside single quotes, honouring backslash escapes."""
    parts: List[str] = []
    current: List[str] = []
    in_quote = False
    escaped = False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            current.append(char)
            escaped = True
        elif char == "'":
            current.append(char)
            in_quote = not in_quote
        elif char in separators and not in_quote:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def check_filter_names(expression: str) -> List[str]:
    """
    Return the filter names used by ``expression``.

    Raises:
        TranscodeError: invalidArguments for filters outside ``ALLOWED_FILTERS``
            or options that name a file.
    """
    names: List[str] = []
    for segment in _split_unquoted(expression, ",;"):
        segment = segment.strip()
        match = _FILTER_NAME.match(segment)
        if not match:
            raise TranscodeError(
                TranscodeReason.INVALID_ARGUMENTS,
                f"Cannot read a filter name from {segment[:40]!r}",
            )
        name = match.group(1)
        if name not in ALLOWED_FILTERS:
            raise TranscodeError(TranscodeReason.INVALID_ARGUMENTS, f"Filter {name!r} is not allowed")

        _, _, options = segment[match.end():].partition("=")
        for option in _split_unquoted(options, ":"):
            key, sep, _ = option.partition("=")
            if sep and key.strip().lower() in FILE_OPTIONS:
                raise TranscodeError(
                    TranscodeReason.INVALID_ARGUMENTS,
                    f"Filter option {name}:{key.strip()} is not allowed",
                )
        names.append(name)
    return names


def check_filter_expression(expression: str) -> str:
    """
    Check that an explicit filter expression is structurally sound.

    Raises:
        TranscodeError: invalidArguments when the expression cannot be used.
    """
    expression = expression.strip()
    if not expression:
        raise TranscodeError(TranscodeReason.INVALID_ARGUMENTS, "Filter expression is empty")
    if len(expression) > MAX_FILTER_LENGTH:
        raise TranscodeError(
            TranscodeReason.INVALID_ARGUMENTS,
            f"Filter expression exceeds {MAX_FILTER_LENGTH} characters",
        )
    if _CONTROL_CHARS.search(expression):
        raise TranscodeError(
            TranscodeReason.INVALID_ARGUMENTS,
            "Filter expression contains control characters",
        )

    stack: List[str] = []
    in_quote = False
    for char in expression:
        if char == "'":
            in_quote = not in_quote
        elif in_quote:
            continue
        elif char in "[(":
            stack.append(char)
        elif char in _BRACKETS:
            if not stack or stack.pop() != _BRACKETS[char]:
                raise TranscodeError(
                    TranscodeReason.INVALID_ARGUMENTS,
                    f"Unbalanced '{char}' in filter expression",
                )
    if in_quote:
        raise TranscodeError(TranscodeReason.INVALID_ARGUMENTS, "Unterminated quote in filter expression")
    if stack:
        raise TranscodeError(TranscodeReason.INVALID_ARGUMENTS, f"Unclosed '{stack[-1]}' in filter expression")
    check_filter_names(expression)
    return expression


def check_output_options(args: tuple[str, ...]) -> List[str]:
    """Validate extra output options against the allow-list."""
    checked: List[str] = []
    i = 0
    while i < len(args):
        option = args[i]
        if option in ALLOWED_OUTPUT_FLAGS:
            checked.append(option)
            i += 1
            continue
        pattern = ALLOWED_OUTPUT_OPTIONS.get(option)
        if pattern is None:
            raise TranscodeError(
                TranscodeReason.INVALID_ARGUMENTS,
                f"Output option {option!r} is not allowed",
            )
        if i + 1 >= len(args):
            raise TranscodeError(TranscodeReason.INVALID_ARGUMENTS, f"Output option {option} needs a value")
        value = args[i + 1]
        if not re.match(pattern, value):
            raise TranscodeError(
                TranscodeReason.INVALID_ARGUMENTS,
                f"Invalid value {value!r} for output option {option}",
            )
        checked.extend([option, value])
        i += 2
    return checked


def resolve_style(style: Optional[str]) -> str:
    if not style:
        return DEFAULT_STYLE
    if style not in STYLE_FILTERS:
        logger.warning(f"Unknown style {style!r}, falling back to {DEFAULT_STYLE!r}")
        return DEFAULT_STYLE
    return style


def build_output_arguments(transform: TransformSpec, output_suffix: str = ".mp4") -> List[str]:
    """
    Resolve a transform into the FFmpeg output options.

    Deterministic: the same transform and container always give the same list.
    """
    suffix = output_suffix.lower()
    arguments: List[str] = []

    if transform.filter:
        vf_filter: Optional[str] = check_filter_expression(transform.filter)
    else:
        vf_filter = STYLE_FILTERS[resolve_style(transform.style)]

    if vf_filter and suffix not in AUDIO_ONLY_CONTAINERS:
        arguments.extend(["-vf", vf_filter])

    arguments.extend(CONTAINER_ENCODING.get(suffix, H264_AAC))
    arguments.extend(check_output_options(transform.args))
    return arguments


@dataclass(frozen=True)
class ToolStatus:
    available: bool
    version: Optional[str] = None
    detail: str = ""


class Transcoder:
    """Runs FFmpeg, or a pass-through copy when transcoding is disabled."""

    def __init__(self, settings: Settings):
        self.enabled = settings.transcoder_enabled
        self.binary = settings.ffmpeg_binary
        self.log_level = settings.ffmpeg_log_level
        self.timeout_seconds = settings.transcode_timeout_seconds
        self.stderr_limit = settings.stderr_limit_bytes
        self._status: Optional[ToolStatus] = None

    def probe(self) -> ToolStatus:
        """Check the FFmpeg executable once and cache the answer."""
        available, version, detail = probe_ffmpeg(self.binary)
        self._status = ToolStatus(available=available, version=version, detail=detail)
        if available:
            logger.info("FFmpeg available: %s", version or self.binary)
        elif self.enabled:
            logger.error("FFmpeg not available (%s); transcoding requests will fail", detail)
        return self._status

    @property
    def status(self) -> ToolStatus:
        if self._status is None:
            return self.probe()
        return self._status

    @property
    def usable(self) -> bool:
        return not self.enabled or self.status.available

    def ensure_available(self) -> None:
        if self.enabled and not self.status.available:
            raise TranscodeError(
                TranscodeReason.TOOL_NOT_AVAILABLE,
                f"FFmpeg is not available: {self.status.detail}",
            )

    def check_transform(self, transform: TransformSpec, output_suffix: str = ".mp4") -> List[str]:
        """Resolve a transform without running anything; raises invalidArguments."""
        return build_output_arguments(transform, output_suffix)

    def build_command(self, input_path: Path, output_path: Path, transform: TransformSpec) -> List[str]:
        return [
            self.binary,
            "-nostdin",
            "-y",
            "-hide_banner",
            "-loglevel", self.log_level,
            "-i", str(input_path),
            *build_output_arguments(transform, output_path.suffix),
            str(output_path),
        ]

    async def run(self, input_path: Path, output_path: Path, transform: TransformSpec) -> TranscodeOutcome:
        """
        Transcode ``input_path`` into ``output_path``.

        Raises:
            TranscodeError: toolNotAvailable, invalidArguments, nonZeroExit or timeout.
        """
        if not self.enabled:
            await asyncio.to_thread(shutil.copyfile, input_path, output_path)
            logger.info("Transcoder disabled, copied %s through unchanged", input_path.name)
            return TranscodeOutcome(
                exit_status=0,
                diagnostic_output="transcoder disabled: pass-through copy",
                passthrough=True,
            )

        self.ensure_available()
        cmd = self.build_command(input_path, output_path, transform)
        logger.info("Running FFmpeg: %s", cmd)

        try:
            result = await run_ffmpeg(cmd, timeout=self.timeout_seconds, stderr_limit=self.stderr_limit)
        except FFmpegTimeout as e:
            raise TranscodeError(
                TranscodeReason.TIMEOUT,
                str(e),
                details={"stderr": e.stderr},
            ) from e
        except (FileNotFoundError, PermissionError) as e:
            raise TranscodeError(
                TranscodeReason.TOOL_NOT_AVAILABLE,
                f"FFmpeg could not be started: {e}",
            ) from e

        if result.returncode != 0:
            logger.error(f"FFmpeg failed with exit code {result.returncode}: {result.stderr}")
            raise TranscodeError(
                TranscodeReason.NON_ZERO_EXIT,
                f"FFmpeg exited with code {result.returncode}",
                details={"exit_status": result.returncode, "stderr": result.stderr},
            )

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise TranscodeError(
                TranscodeReason.NON_ZERO_EXIT,
                "FFmpeg exited cleanly but produced no output",
                details={"exit_status": result.returncode, "stderr": result.stderr},
            )

        return TranscodeOutcome(
            exit_status=result.returncode,
            diagnostic_output=result.stderr,
            duration_seconds=result.duration_seconds,
        )
