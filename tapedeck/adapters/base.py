# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Abstract base class for tapedeck backend adapters.

An adapter turns one backend's API into universal media values.  Every
library call needs a live session: without one it raises NotAuthenticated
before touching the network.  Sessions expire silently on the server side;
adapters never refresh on their own, the playback service re-authenticates
and retries once.

URL builders (stream_url, artwork_url) are pure: they never do I/O and
return None instead of raising when something they need is missing.

HTTP adapters funnel every request through ``_request_json`` so transport
errors are mapped to the tapedeck taxonomy in one place.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import aiohttp

from tapedeck.errors import (
    DecodingError,
    HTTPError,
    InvalidConfiguration,
    NetworkError,
    NotAuthenticated,
    TapedeckError,
)
from tapedeck.lib.config import cfg
from tapedeck.lib.credentials import BackendSettings, normalize_base_url
from tapedeck.models import (
    SearchResults,
    UniversalAlbum,
    UniversalArtist,
    UniversalPlaylist,
    UniversalSong,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class BackendAdapter(ABC):
    """Interface every backend must implement."""

    id: str = ""
    name: str = ""

    def __init__(self, settings: BackendSettings | None = None,
                 session: aiohttp.ClientSession | None = None):
        self.settings = settings or BackendSettings()
        self._http = session
        self._session_token: str | None = None
        self._timeout = aiohttp.ClientTimeout(
            total=cfg("http", "timeout", default=DEFAULT_TIMEOUT))

    # ── Session ──

    @property
    def authenticated(self) -> bool:
        return self._session_token is not None

    @property
    def base_url(self) -> str:
        return normalize_base_url(self.settings.base_url)

    def configure(self, settings: BackendSettings) -> None:
        """Replace the settings and drop the current session."""
        self.settings = settings
        self._session_token = None

    def _require_settings(self) -> None:
        if not self.settings.complete:
            raise InvalidConfiguration(f"{self.name} needs a server URL, username and password")

    def _require_session(self) -> str:
        if self._session_token is None:
            raise NotAuthenticated(f"{self.name}: no session")
        return self._session_token

    @abstractmethod
    async def authenticate(self, settings: BackendSettings | None = None) -> str:
        """Log in and return the session handle."""

    async def logout(self) -> None:
        self._session_token = None

    async def check_availability(self) -> bool:
        """True if the backend can be logged into right now."""
        try:
            await self.authenticate()
        except TapedeckError as e:
            logger.warning("%s unavailable: %s", self.name, e)
            return False
        return True

    # ── Library ──

    @abstractmethod
    async def list_albums(self) -> list[UniversalAlbum]: ...

    @abstractmethod
    async def list_artists(self) -> list[UniversalArtist]: ...

    @abstractmethod
    async def list_playlists(self) -> list[UniversalPlaylist]: ...

    @abstractmethod
    async def songs_for_album(self, album: UniversalAlbum | str) -> list[UniversalSong]: ...

    @abstractmethod
    async def songs_for_artist(self, artist: UniversalArtist | str) -> list[UniversalSong]: ...

    @abstractmethod
    async def songs_for_playlist(self, playlist: UniversalPlaylist | str) -> list[UniversalSong]: ...

    @abstractmethod
    async def search(self, query: str) -> SearchResults: ...

    # ── URL builders (no I/O) ──

    @abstractmethod
    def stream_url(self, song: UniversalSong | str) -> str | None: ...

    @abstractmethod
    def artwork_url(self, item) -> str | None: ...

    # -- Optional: override in adapters that report plays --

    async def report_playback(self, song: UniversalSong) -> None:
        pass

    # ── HTTP ──

    async def _request_json(self, url: str, params: dict | None = None,
                            method: str = "GET"):
        """Perform one request and return the decoded JSON body."""
        if self._http is None:
            raise NetworkError(f"{self.name}: no HTTP session")
        kwargs = {"timeout": self._timeout}
        if method == "POST":
            kwargs["data"] = params or {}
        else:
            kwargs["params"] = params or {}
        try:
            async with self._http.request(method, url, **kwargs) as resp:
                if resp.status in (401, 403):
                    raise NotAuthenticated(f"{self.name}: HTTP {resp.status}")
                if resp.status >= 400:
                    raise HTTPError(resp.status)
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("%s request to %s failed: %s", self.name, url, e or type(e).__name__)
            raise NetworkError(str(e) or type(e).__name__) from e
        except ValueError as e:
            raise DecodingError(f"{self.name}: response is not JSON") from e
