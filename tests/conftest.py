"""
Shared fixtures and fake collaborators for the pipeline tests.
"""

import asyncio
import stat
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from mediaproc.config import Settings
from mediaproc.core.pipeline import (
    PublishError,
    PublishReason,
    PublishResult,
    TranscodeError,
    TranscodeOutcome,
    TranscodeReason,
    TransformSpec,
)
from mediaproc.core.pipeline.coordinator import PipelineCoordinator
from mediaproc.core.publisher import join_public_url
from mediaproc.core.transcoder import ToolStatus, build_output_arguments
from mediaproc.core.workspace import WorkspaceManager

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake ffmpeg is a shell script")

FAKE_FFMPEG_VERSION = """#!/bin/sh
if [ "$1" = "-version" ]; then
  echo "ffmpeg version 6.1-fake"
  exit 0
fi
"""

FAKE_FFMPEG_COPY = FAKE_FFMPEG_VERSION + """prev=""
input=""
for arg in "$@"; do
  if [ "$prev" = "-i" ]; then input="$arg"; fi
  prev="$arg"
done
echo "transcoding $input" >&2
cp "$input" "$prev"
"""

FAKE_FFMPEG_FAIL = FAKE_FFMPEG_VERSION + """echo "Invalid data found when processing input" >&2
exit 1
"""

FAKE_FFMPEG_HANG = FAKE_FFMPEG_VERSION + """exec sleep 30
"""

# Records its pid next to the output path, then blocks
FAKE_FFMPEG_RECORD_PID = FAKE_FFMPEG_VERSION + """for arg in "$@"; do out="$arg"; done
echo $$ > "$out.pid.tmp"
mv "$out.pid.tmp" "$out.pid"
exec sleep 30
"""

FAKE_FFMPEG_NOISY = FAKE_FFMPEG_VERSION + """i=0
while [ $i -lt 3000 ]; do
  echo "frame=$i fps=25 q=28.0 size=1024kB time=00:00:01.00 bitrate=8000kbits/s" >&2
  i=$((i + 1))
done
exit 1
"""


@pytest.fixture
def make_tool(tmp_path: Path) -> Callable[[str], str]:
    """Write an executable fake ffmpeg script and return its path."""

    def _make(script: str, name: str = "ffmpeg") -> str:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(script)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage_endpoint="https://account.r2.example.test",
        storage_bucket="media",
        storage_access_key_id="test-access-key",
        storage_secret_access_key="test-secret-key",
        storage_public_base_url="https://cdn.example.test",
        scratch_dir=tmp_path / "scratch",
        max_concurrent_jobs=4,
        fetch_timeout_seconds=5.0,
        transcode_timeout_seconds=5.0,
        publish_timeout_seconds=5.0,
    )


# -----------------------------------------------------------------------------
# Fake collaborators
# -----------------------------------------------------------------------------

class SpyWorkspaceManager(WorkspaceManager):
    """Real workspaces, with a record of every one handed out."""

    def __init__(self, scratch_dir: Path):
        super().__init__(scratch_dir)
        self.acquired = []
        self.released = []

    def acquire(self, request_id, input_suffix=".bin", output_suffix=".mp4"):
        workspace = super().acquire(request_id, input_suffix, output_suffix)
        self.acquired.append(workspace)
        return workspace

    def release(self, workspace):
        self.released.append(workspace)
        super().release(workspace)


class FakeFetcher:
    """Writes canned bytes (the source URL by default) or raises."""

    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, source_location: str, destination: Path) -> int:
        self.calls.append(source_location)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            body = f"source:{source_location}".encode()
            destination.write_bytes(body)
            return len(body)
        finally:
            self.in_flight -= 1


class BlockingFetcher(FakeFetcher):
    """Blocks until cancelled."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def fetch(self, source_location: str, destination: Path) -> int:
        self.calls.append(source_location)
        destination.write_bytes(b"partial")
        self.started.set()
        await asyncio.Event().wait()
        return 0


class FakeTranscoder:
    """Copies input to output with a marker, or raises."""

    def __init__(self, error: Optional[Exception] = None, available: bool = True, enabled: bool = True):
        self.error = error
        self.enabled = enabled
        self._status = ToolStatus(available=available, version="ffmpeg version fake", detail="fake")
        self.calls: List[tuple] = []

    def probe(self) -> ToolStatus:
        return self._status

    @property
    def status(self) -> ToolStatus:
        return self._status

    @property
    def usable(self) -> bool:
        return not self.enabled or self._status.available

    def ensure_available(self) -> None:
        if self.enabled and not self._status.available:
            raise TranscodeError(TranscodeReason.TOOL_NOT_AVAILABLE, "ffmpeg missing")

    def check_transform(self, transform: TransformSpec, output_suffix: str = ".mp4"):
        return build_output_arguments(transform, output_suffix)

    async def run(self, input_path: Path, output_path: Path, transform: TransformSpec) -> TranscodeOutcome:
        self.calls.append((input_path, output_path, transform))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        output_path.write_bytes(b"transcoded:" + input_path.read_bytes())
        return TranscodeOutcome(exit_status=0)


class FakePublisher:
    """In-memory bucket keyed by storage key."""

    def __init__(self, error: Optional[Exception] = None, configured: bool = True,
                 public_base_url: str = "https://cdn.example.test"):
        self.error = error
        self.configured = configured
        self.public_base_url = public_base_url
        self.objects: Dict[str, bytes] = {}
        self.calls: List[tuple] = []

    def missing_settings(self) -> List[str]:
        return [] if self.configured else ["R2_BUCKET_NAME"]

    @property
    def is_configured(self) -> bool:
        return self.configured

    def ensure_configured(self) -> None:
        if not self.configured:
            raise PublishError(PublishReason.NOT_CONFIGURED, "storage not configured")

    async def publish(self, local_path: Path, storage_key: str, content_type: Optional[str] = None) -> PublishResult:
        self.calls.append((local_path, storage_key, content_type))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        body = Path(local_path).read_bytes()
        self.objects[storage_key] = body
        return PublishResult(
            storage_key=storage_key,
            public_url=join_public_url(self.public_base_url, storage_key),
            content_type=content_type or "video/mp4",
            size_bytes=len(body),
        )


@pytest.fixture
def workspaces(settings: Settings) -> SpyWorkspaceManager:
    return SpyWorkspaceManager(settings.scratch_dir)


@pytest.fixture
def make_coordinator(settings: Settings, workspaces: SpyWorkspaceManager):
    """Build a coordinator around fakes; any collaborator can be overridden."""

    def _make(
        fetcher=None,
        transcoder=None,
        publisher=None,
        settings_override: Optional[Settings] = None,
    ) -> PipelineCoordinator:
        return PipelineCoordinator(
            settings_override or settings,
            workspaces=workspaces,
            fetcher=fetcher or FakeFetcher(),
            transcoder=transcoder or FakeTranscoder(),
            publisher=publisher or FakePublisher(),
        )

    return _make
