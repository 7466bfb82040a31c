import re
import uuid
from datetime import datetime, timezone

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def generate_run_id() -> str:
    """
    Generates a unique run ID for folder naming.
    Format: YYYYMMDD_HHMMSS_RANDOM
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    short_uuid = uuid.uuid4().hex[:8]
    return f"{timestamp}_{short_uuid}"


def generate_request_id() -> str:
    return uuid.uuid4().hex


def sanitize_filename(text: str, max_len: int = 40) -> str:
    safe = _UNSAFE_CHARS.sub("_", text.strip())
    return safe[:max_len] if safe else "run"
