"""
Tests for argument resolution and FFmpeg execution.

Execution tests use a fake ``ffmpeg`` shell script, so they need a POSIX shell.
"""

import asyncio
import os
from dataclasses import replace

import pytest

from conftest import (
    FAKE_FFMPEG_COPY,
    FAKE_FFMPEG_FAIL,
    FAKE_FFMPEG_HANG,
    FAKE_FFMPEG_NOISY,
    FAKE_FFMPEG_RECORD_PID,
    posix_only,
)
from mediaproc.core.pipeline import TranscodeError, TransformSpec
from mediaproc.core.transcoder import (
    DEFAULT_STYLE,
    STYLE_FILTERS,
    Transcoder,
    build_output_arguments,
    check_filter_expression,
    check_filter_names,
    check_output_options,
    resolve_style,
)
from mediaproc.core.utils.ffmpeg import filter_benign_warnings


def read_pid(output):
    return int(output.with_name(output.name + ".pid").read_text().strip())


def assert_process_gone(pid):
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


class TestStyleResolution:

    def test_default_has_no_filter(self):
        args = build_output_arguments(TransformSpec())
        assert "-vf" not in args
        assert args[:2] == ["-c:v", "libx264"]
        assert args[-2:] == ["-movflags", "+faststart"]

    def test_named_style(self):
        args = build_output_arguments(TransformSpec(style="vertical"))
        assert args[:2] == ["-vf", STYLE_FILTERS["vertical"]]

    def test_unknown_style_falls_back_to_default(self):
        assert resolve_style("sepia") == DEFAULT_STYLE
        assert build_output_arguments(TransformSpec(style="sepia")) == build_output_arguments(TransformSpec())

    def test_every_style_resolves(self):
        for style in STYLE_FILTERS:
            args = build_output_arguments(TransformSpec(style=style))
            assert all(isinstance(arg, str) for arg in args)

    def test_deterministic(self):
        transform = TransformSpec(style="split", args=("-crf", "23"))
        assert build_output_arguments(transform) == build_output_arguments(transform)

    def test_audio_container_drops_video_filter(self):
        args = build_output_arguments(TransformSpec(style="vertical"), ".mp3")
        assert "-vf" not in args
        assert "libmp3lame" in args

    def test_webm_encoding(self):
        args = build_output_arguments(TransformSpec(), ".webm")
        assert "libvpx-vp9" in args


class TestExplicitFilters:

    def test_filter_is_a_single_argument(self):
        expression = "scale=640:-2,drawtext=text='a b; c'"
        args = build_output_arguments(TransformSpec(filter=expression))
        assert args[:2] == ["-vf", expression]

    @pytest.mark.parametrize(
        "expression",
        [
            "   ",
            "scale=640:-2[out",
            "[in]scale=640:-2]",
            "pad=(ow-iw)/2:(oh-ih/2",
            "drawtext=text='unterminated",
            "scale=640:-2\nnull",
            "x" * 5000,
            "movie=/tmp/mediaproc/other_run/input.mp4[m];[in][m]overlay",
            "amovie=/etc/passwd",
            "sendcmd=f=/tmp/cmds.txt,scale=640:-2",
            "scale=640:-2,subtitles=/srv/secret.srt",
            "drawtext=textfile=/etc/hostname",
            "drawtext=text='x':textfile=/etc/hostname",
            "curves=psfile=/tmp/preset.acv",
            "scale=640:-2,",
        ],
    )
    def test_malformed_filter_rejected(self, expression):
        with pytest.raises(TranscodeError) as exc_info:
            check_filter_expression(expression)
        assert exc_info.value.reason_code == "invalidArguments"

    def test_file_reading_filter_never_reaches_arguments(self):
        with pytest.raises(TranscodeError):
            build_output_arguments(TransformSpec(filter="[in]scale=640:-2[a];movie=/tmp/x.mp4[m];[a][m]overlay"))

    @pytest.mark.parametrize(
        "expression, names",
        [
            ("scale=640:-2", ["scale"]),
            ("[in]scale=640:-2[a];[a]hflip[out]", ["scale", "hflip"]),
            ("drawtext=text='movie=a, b; c'", ["drawtext"]),
            ("scale@main=640:-2,setsar=1", ["scale", "setsar"]),
        ],
    )
    def test_filter_names(self, expression, names):
        assert check_filter_names(expression) == names

    def test_every_style_passes_the_filter_check(self):
        for expression in STYLE_FILTERS.values():
            if expression:
                check_filter_expression(expression)


class TestOutputOptions:

    def test_allowed_options(self):
        assert check_output_options(("-crf", "23", "-an", "-preset", "slow")) == [
            "-crf", "23", "-an", "-preset", "slow",
        ]

    @pytest.mark.parametrize(
        "args",
        [
            ("-f", "null"),
            ("-i", "/etc/passwd"),
            ("-crf",),
            ("-crf", "; rm -rf /"),
            ("-preset", "-y"),
            ("/tmp/other-output.mp4",),
        ],
    )
    def test_rejected_options(self, args):
        with pytest.raises(TranscodeError) as exc_info:
            check_output_options(args)
        assert exc_info.value.reason_code == "invalidArguments"

    def test_extra_options_follow_defaults(self):
        args = build_output_arguments(TransformSpec(args=("-crf", "28")))
        assert args[-2:] == ["-crf", "28"]


class TestCommand:

    def test_command_is_an_argument_list(self, settings, tmp_path):
        transcoder = Transcoder(settings)
        cmd = transcoder.build_command(tmp_path / "input.bin", tmp_path / "output.mp4", TransformSpec())

        assert cmd[0] == "ffmpeg"
        assert "-nostdin" in cmd
        assert cmd[cmd.index("-i") + 1] == str(tmp_path / "input.bin")
        assert cmd[-1] == str(tmp_path / "output.mp4")
        assert cmd[cmd.index("-loglevel") + 1] == "error"


class TestToolAvailability:

    def test_missing_binary(self, settings, tmp_path):
        transcoder = Transcoder(replace(settings, ffmpeg_binary=str(tmp_path / "missing")))
        status = transcoder.probe()
        assert not status.available
        assert not transcoder.usable

    def test_run_fails_fast_without_tool(self, settings, tmp_path):
        transcoder = Transcoder(replace(settings, ffmpeg_binary=str(tmp_path / "missing")))
        source = tmp_path / "in.mp4"
        source.write_bytes(b"data")

        with pytest.raises(TranscodeError) as exc_info:
            asyncio.run(transcoder.run(source, tmp_path / "out.mp4", TransformSpec()))
        assert exc_info.value.reason_code == "toolNotAvailable"

    @posix_only
    def test_probe_is_cached(self, settings, make_tool):
        transcoder = Transcoder(replace(settings, ffmpeg_binary=make_tool(FAKE_FFMPEG_COPY)))
        first = transcoder.probe()
        assert first.available
        assert first.version == "ffmpeg version 6.1-fake"
        assert transcoder.status is first

    def test_disabled_transcoder_is_usable_without_tool(self, settings, tmp_path):
        transcoder = Transcoder(
            replace(settings, transcoder_enabled=False, ffmpeg_binary=str(tmp_path / "missing"))
        )
        assert transcoder.usable


@posix_only
class TestExecution:

    @pytest.fixture
    def source(self, tmp_path):
        path = tmp_path / "input.bin"
        path.write_bytes(b"not really a video")
        return path

    def test_success(self, settings, make_tool, source, tmp_path):
        transcoder = Transcoder(replace(settings, ffmpeg_binary=make_tool(FAKE_FFMPEG_COPY)))
        output = tmp_path / "output.mp4"

        outcome = asyncio.run(transcoder.run(source, output, TransformSpec(style="vertical")))

        assert outcome.exit_status == 0
        assert not outcome.passthrough
        assert output.read_bytes() == source.read_bytes()
        assert "transcoding" in outcome.diagnostic_output

    def test_non_zero_exit(self, settings, make_tool, source, tmp_path):
        transcoder = Transcoder(replace(settings, ffmpeg_binary=make_tool(FAKE_FFMPEG_FAIL)))

        with pytest.raises(TranscodeError) as exc_info:
            asyncio.run(transcoder.run(source, tmp_path / "output.mp4", TransformSpec()))

        error = exc_info.value
        assert error.reason_code == "nonZeroExit"
        assert error.details["exit_status"] == 1
        assert "Invalid data found" in error.details["stderr"]

    def test_timeout(self, settings, make_tool, source, tmp_path):
        transcoder = Transcoder(
            replace(settings, ffmpeg_binary=make_tool(FAKE_FFMPEG_HANG), transcode_timeout_seconds=0.5)
        )

        with pytest.raises(TranscodeError) as exc_info:
            asyncio.run(transcoder.run(source, tmp_path / "output.mp4", TransformSpec()))
        assert exc_info.value.reason_code == "timeout"

    def test_timeout_kills_process(self, settings, make_tool, source, tmp_path):
        transcoder = Transcoder(
            replace(settings, ffmpeg_binary=make_tool(FAKE_FFMPEG_RECORD_PID), transcode_timeout_seconds=2)
        )
        output = tmp_path / "output.mp4"

        with pytest.raises(TranscodeError):
            asyncio.run(transcoder.run(source, output, TransformSpec()))

        assert_process_gone(read_pid(output))

    def test_cancel_kills_process(self, settings, make_tool, source, tmp_path):
        transcoder = Transcoder(replace(settings, ffmpeg_binary=make_tool(FAKE_FFMPEG_RECORD_PID)))
        output = tmp_path / "output.mp4"
        pid_file = output.with_name(output.name + ".pid")

        async def cancel_mid_run():
            task = asyncio.create_task(transcoder.run(source, output, TransformSpec()))
            for _ in range(200):
                if pid_file.exists():
                    break
                await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(cancel_mid_run())

        assert_process_gone(read_pid(output))

    def test_stderr_is_bounded(self, settings, make_tool, source, tmp_path):
        transcoder = Transcoder(
            replace(settings, ffmpeg_binary=make_tool(FAKE_FFMPEG_NOISY), stderr_limit_bytes=1024)
        )

        with pytest.raises(TranscodeError) as exc_info:
            asyncio.run(transcoder.run(source, tmp_path / "output.mp4", TransformSpec()))

        stderr = exc_info.value.details["stderr"]
        assert 0 < len(stderr.encode()) <= 1024
        assert "frame=2999" in stderr

    def test_disabled_copies_input(self, settings, source, tmp_path):
        transcoder = Transcoder(replace(settings, transcoder_enabled=False))
        output = tmp_path / "output.mp4"

        outcome = asyncio.run(transcoder.run(source, output, TransformSpec(style="vertical")))

        assert outcome.passthrough
        assert output.read_bytes() == source.read_bytes()


class TestBenignWarnings:

    def test_filters_known_warnings(self):
        stderr = "\n".join([
            "[av1 @ 0x1] Failed to get pixel format",
            "Error while decoding stream #0:0",
        ])
        filtered, warnings = filter_benign_warnings(stderr)
        assert filtered == "Error while decoding stream #0:0"
        assert len(warnings) == 1
