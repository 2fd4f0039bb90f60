"""
Backend adapters for tapedeck.

Each adapter turns one backend's API into universal media values.  The
factory ``create_adapter`` builds the right adapter for a backend id and
loads its persisted settings.

Supported backends:
  - ``subsonic``      – Subsonic / OpenSubsonic servers (stable IDs)
  - ``audiostation``  – Synology Audio Station (synthetic IDs + entity resolution)
  - ``local``         – music files under local.paths
"""

import logging

import aiohttp

from tapedeck.errors import InvalidConfiguration
from tapedeck.lib.credentials import load_backend_settings
from tapedeck.models import AUDIO_STATION, LOCAL, SUBSONIC

from .audiostation import AudioStationAdapter
from .base import BackendAdapter
from .local import LocalAdapter
from .subsonic import SubsonicAdapter

logger = logging.getLogger(__name__)

__all__ = [
    "BackendAdapter",
    "AudioStationAdapter",
    "LocalAdapter",
    "SubsonicAdapter",
    "create_adapter",
]

_ADAPTERS = {
    SUBSONIC: SubsonicAdapter,
    AUDIO_STATION: AudioStationAdapter,
    LOCAL: LocalAdapter,
}


def create_adapter(backend: str, session: aiohttp.ClientSession | None = None) -> BackendAdapter:
    """Create the adapter for *backend* with its stored settings.

    Settings are read once, here; later changes go through
    ``adapter.configure()``.  A backend without stored settings still gets an
    adapter — it raises InvalidConfiguration when asked to authenticate.
    """
    cls = _ADAPTERS.get(str(backend).lower())
    if cls is None:
        raise InvalidConfiguration(f"Unknown backend '{backend}'")
    settings = load_backend_settings(cls.id)
    if settings is None and cls is not LocalAdapter:
        logger.info("%s: no stored settings", cls.name)
    return cls(settings, session)
