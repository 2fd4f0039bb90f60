"""
Atomic per-backend settings storage (base URL, username, password).

All backends share one JSON file keyed by backend id.  Writes are atomic
(temp file + rename) so a crash mid-write never corrupts the file.  The
store is read when an adapter is built and written only by an explicit
reconfiguration; session tokens are never stored here.

Storage locations (first existing, else first writable):
  1. $TAPEDECK_CREDENTIALS
  2. /etc/tapedeck/backends.json
  3. ~/.config/tapedeck/backends.json
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def store_paths() -> list[str]:
    paths = []
    override = os.environ.get("TAPEDECK_CREDENTIALS")
    if override:
        paths.append(override)
    paths += [
        "/etc/tapedeck/backends.json",
        os.path.join(os.path.expanduser("~"), ".config", "tapedeck", "backends.json"),
    ]
    return paths


@dataclass(frozen=True)
class BackendSettings:
    base_url: str = ""
    username: str = ""
    password: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.base_url and self.username and self.password)

    def __repr__(self):
        return f"BackendSettings(base_url={self.base_url!r}, username={self.username!r})"


def normalize_base_url(url: str | None) -> str:
    """Trim, default to https://, drop the trailing slash."""
    url = (url or "").strip()
    if not url:
        return ""
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url.rstrip("/")


def _find_store_path():
    """Find the best store path (first existing, or first writable)."""
    paths = store_paths()
    for path in paths:
        if os.path.exists(path):
            return path
    for path in paths:
        d = os.path.dirname(path)
        if os.path.isdir(d) and os.access(d, os.W_OK):
            return path
    return paths[-1]


def _load_all() -> dict:
    path = _find_store_path()
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        logger.error("Corrupt settings store %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def load_backend_settings(backend: str) -> BackendSettings | None:
    """Settings for *backend*, or None if it was never configured."""
    entry = _load_all().get(backend)
    if not isinstance(entry, dict):
        return None
    return BackendSettings(
        base_url=normalize_base_url(entry.get("base_url")),
        username=entry.get("username", ""),
        password=entry.get("password", ""),
    )


def _write_all(data: dict) -> str:
    path = _find_store_path()
    # Atomic write: temp file in same directory, then rename
    d = os.path.dirname(path)
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=d, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
    return path


def save_backend_settings(backend: str, settings: BackendSettings) -> str:
    """Atomically write *settings* for *backend*.  Returns the store path."""
    data = _load_all()
    entry = asdict(settings)
    entry["base_url"] = normalize_base_url(settings.base_url)
    entry["updated_at"] = datetime.now(timezone.utc).isoformat()
    data[backend] = entry
    path = _write_all(data)
    logger.info("Saved %s settings to %s", backend, path)
    return path
