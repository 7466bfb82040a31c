"""
Scratch workspaces for pipeline runs.

Each run gets its own directory created with ``tempfile.mkdtemp`` under the
configured scratch root, so concurrent runs never share files.
"""

import logging
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from mediaproc.core.pipeline.models import Workspace
from mediaproc.core.utils.ids import generate_run_id, sanitize_filename

logger = logging.getLogger(__name__)

_SAFE_SUFFIX = re.compile(r"^\.[A-Za-z0-9]{1,8}$")

INPUT_STEM = "input"
OUTPUT_STEM = "output"


def safe_suffix(name: str, default: str) -> str:
    """Return the file extension of ``name`` if it is short and alphanumeric."""
    suffix = Path(name).suffix.lower()
    return suffix if _SAFE_SUFFIX.match(suffix) else default


class WorkspaceManager:
    """Allocates and releases per-run scratch directories."""

    def __init__(self, scratch_dir: Path):
        self.scratch_dir = Path(scratch_dir)

    def acquire(
        self,
        request_id: str,
        input_suffix: str = ".bin",
        output_suffix: str = ".mp4",
    ) -> Workspace:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        prefix = f"{generate_run_id()}_{sanitize_filename(request_id)}_"
        root = Path(tempfile.mkdtemp(prefix=prefix, dir=self.scratch_dir))
        workspace = Workspace(
            root=root,
            input_path=root / f"{INPUT_STEM}{input_suffix}",
            output_path=root / f"{OUTPUT_STEM}{output_suffix}",
        )
        logger.debug("Acquired workspace %s for request %s", root, request_id)
        return workspace

    def release(self, workspace: Workspace) -> None:
        """Remove the workspace. Failures are logged, never raised."""
        for path in (workspace.input_path, workspace.output_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not delete scratch file {path}: {e}")

        # Anything else the tool may have left behind (e.g. ffmpeg pass logs)
        try:
            leftovers = list(workspace.root.iterdir()) if workspace.root.exists() else []
        except OSError as e:
            logger.warning(f"Could not list workspace {workspace.root}: {e}")
            leftovers = []
        for path in leftovers:
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Could not delete scratch file {path}: {e}")

        try:
            workspace.root.rmdir()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete workspace {workspace.root}: {e}")
        else:
            logger.debug("Released workspace %s", workspace.root)

    @contextmanager
    def session(
        self,
        request_id: str,
        input_suffix: str = ".bin",
        output_suffix: str = ".mp4",
    ) -> Iterator[Workspace]:
        """Acquire a workspace and release it on every exit path."""
        workspace = self.acquire(request_id, input_suffix, output_suffix)
        try:
            yield workspace
        finally:
            self.release(workspace)
