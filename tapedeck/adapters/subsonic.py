# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Subsonic / OpenSubsonic adapter (Navidrome, Airsonic, Gonic, ...).

Subsonic has real IDs and real container → song linkage, so album, artist
and playlist songs are direct calls.  There is no server session: every
request carries ``u``, ``t = md5(password + salt)`` and ``s``.  The adapter
treats one salt/token pair as its session handle — created by
authenticate() (which pings the server) and reused for stream and cover
URLs until the next authenticate().

Responses are wrapped:

    {"subsonic-response": {"status": "ok", "version": "1.16.1", ...}}
    {"subsonic-response": {"status": "failed", "error": {"code": 40, ...}}}
"""

import asyncio
import hashlib
import logging
import secrets
import string
import time
from dataclasses import replace
from urllib.parse import urlencode

from tapedeck.errors import (
    APIError,
    AuthenticationFailed,
    DecodingError,
    EntityNotFound,
    NotAuthenticated,
)
from tapedeck.lib.config import cfg
from tapedeck.lib.credentials import BackendSettings
from tapedeck.lib.decoding import decode_list, dig, first_str, as_float, as_int
from tapedeck.models import (
    SUBSONIC,
    UNKNOWN_ARTIST,
    SearchResults,
    UniversalAlbum,
    UniversalArtist,
    UniversalPlaylist,
    UniversalSong,
)

from .base import BackendAdapter

logger = logging.getLogger(__name__)

API_VERSION = "1.16.1"
ALBUM_PAGE_SIZE = 500
SEARCH_COUNT = 20
COVER_SIZE = 600

# Wrong credentials, token auth unsupported, ...
AUTH_ERROR_CODES = {40, 41, 42, 43, 44, 45}
NOT_FOUND_CODE = 70

_SALT_ALPHABET = string.ascii_lowercase + string.digits


def make_salt(length=8) -> str:
    return "".join(secrets.choice(_SALT_ALPHABET) for _ in range(length))


def make_token(password: str, salt: str) -> str:
    return hashlib.md5((password + salt).encode("utf-8")).hexdigest()


class SubsonicAdapter(BackendAdapter):
    id = SUBSONIC
    name = "Subsonic"

    def __init__(self, settings=None, session=None):
        super().__init__(settings, session)
        self._salt: str | None = None
        self.client_name = cfg("http", "client_name", default="tapedeck")
        self.max_bitrate = cfg("subsonic", "max_bitrate", default=0)
        self.stream_format = cfg("subsonic", "format")

    # ── Session ──

    async def authenticate(self, settings: BackendSettings | None = None) -> str:
        if settings is not None:
            self.configure(settings)
        self._require_settings()
        salt = make_salt()
        token = make_token(self.settings.password, salt)
        # ping validates the credentials; _call needs the pair in place
        previous = (self._salt, self._session_token)
        self._salt, self._session_token = salt, token
        try:
            await self._call("ping")
        except NotAuthenticated as e:
            self._salt, self._session_token = None, None
            raise AuthenticationFailed(e.message, getattr(e, "code", None)) from e
        except Exception:
            self._salt, self._session_token = previous
            raise
        logger.info("Subsonic: authenticated as %s at %s", self.settings.username, self.base_url)
        return token

    async def logout(self) -> None:
        self._salt = None
        await super().logout()

    def _auth_params(self) -> dict:
        token = self._require_session()
        return {
            "u": self.settings.username,
            "t": token,
            "s": self._salt,
            "v": API_VERSION,
            "c": self.client_name,
            "f": "json",
        }

    async def _call(self, endpoint: str, **params) -> dict:
        query = self._auth_params()
        query.update({k: v for k, v in params.items() if v is not None})
        body = await self._request_json(f"{self.base_url}/rest/{endpoint}", query)
        response = dig(body, ("subsonic-response",))
        if not isinstance(response, dict):
            raise DecodingError(f"{endpoint}: missing subsonic-response")
        if response.get("status") == "ok":
            return response
        error = response.get("error") or {}
        code = as_int(error.get("code"))
        message = error.get("message") or f"{endpoint} failed"
        if code in AUTH_ERROR_CODES:
            raise AuthenticationFailed(message, code)
        if code == NOT_FOUND_CODE:
            raise EntityNotFound(message)
        raise APIError(message, code)

    # ── Conversion ──

    def _song(self, entry: dict) -> UniversalSong:
        song = UniversalSong(
            id=str(entry["id"]),
            title=entry.get("title") or "",
            artist=first_str(entry, "artist", "displayArtist") or UNKNOWN_ARTIST,
            album=first_str(entry, "album"),
            duration=as_float(entry.get("duration")),
            track_number=as_int(entry.get("track")),
            source=SUBSONIC,
            native=entry,
        )
        return song.with_stream(self.stream_url(song)).with_artwork(self.artwork_url(song))

    def _album(self, entry: dict) -> UniversalAlbum:
        album = UniversalAlbum(
            id=str(entry["id"]),
            name=first_str(entry, "name", "title", "album") or "",
            subtitle=first_str(entry, "artist", "displayArtist") or UNKNOWN_ARTIST,
            song_count=as_int(entry.get("songCount")) or 0,
            duration=as_float(entry.get("duration")),
            year=as_int(entry.get("year")),
            genre=first_str(entry, "genre"),
            source=SUBSONIC,
            native=entry,
        )
        return replace(album, artwork_url=self.artwork_url(album))

    def _artist(self, entry: dict) -> UniversalArtist:
        artist = UniversalArtist(
            id=str(entry["id"]),
            name=entry.get("name") or UNKNOWN_ARTIST,
            album_count=as_int(entry.get("albumCount")) or 0,
            source=SUBSONIC,
            native=entry,
        )
        return replace(artist, artwork_url=self.artwork_url(artist))

    def _playlist(self, entry: dict) -> UniversalPlaylist:
        return UniversalPlaylist(
            id=str(entry["id"]),
            name=entry.get("name") or "",
            subtitle=entry.get("owner") or "",
            song_count=as_int(entry.get("songCount")) or 0,
            duration=as_float(entry.get("duration")),
            source=SUBSONIC,
            native=entry,
        )

    # ── Library ──

    async def list_albums(self) -> list[UniversalAlbum]:
        self._require_session()
        albums = []
        offset = 0
        while True:
            resp = await self._call("getAlbumList2", type="alphabeticalByName",
                                    size=ALBUM_PAGE_SIZE, offset=offset)
            page = decode_list(resp, (("albumList2.album", ("albumList2", "album")),), self._album)
            batch = page.value if page.ok else []
            albums.extend(batch)
            if len(batch) < ALBUM_PAGE_SIZE:
                break
            offset += ALBUM_PAGE_SIZE
        logger.info("Subsonic: %d albums", len(albums))
        return albums

    async def list_artists(self) -> list[UniversalArtist]:
        self._require_session()
        resp = await self._call("getArtists")
        index = decode_list(resp, (("artists.index", ("artists", "index")),))
        artists = []
        for bucket in index.value if index.ok else []:
            decoded = decode_list(bucket, (("artist", ("artist",)),), self._artist)
            if decoded.ok:
                artists.extend(decoded.value)
        return artists

    async def list_playlists(self) -> list[UniversalPlaylist]:
        self._require_session()
        resp = await self._call("getPlaylists")
        decoded = decode_list(resp, (("playlists.playlist", ("playlists", "playlist")),),
                              self._playlist)
        return decoded.value if decoded.ok else []

    async def songs_for_album(self, album) -> list[UniversalSong]:
        self._require_session()
        album_id = album if isinstance(album, str) else album.id
        try:
            resp = await self._call("getAlbum", id=album_id)
        except EntityNotFound:
            logger.info("Subsonic: album %s not found", album_id)
            return []
        decoded = decode_list(resp, (("album.song", ("album", "song")),), self._song)
        return decoded.value if decoded.ok else []

    async def songs_for_artist(self, artist) -> list[UniversalSong]:
        self._require_session()
        artist_id = artist if isinstance(artist, str) else artist.id
        try:
            resp = await self._call("getArtist", id=artist_id)
        except EntityNotFound:
            logger.info("Subsonic: artist %s not found", artist_id)
            return []
        albums = decode_list(resp, (("artist.album", ("artist", "album")),))
        ids = [str(a["id"]) for a in (albums.value if albums.ok else []) if "id" in a]
        per_album = await asyncio.gather(*(self.songs_for_album(i) for i in ids))
        return [song for songs in per_album for song in songs]

    async def songs_for_playlist(self, playlist) -> list[UniversalSong]:
        self._require_session()
        playlist_id = playlist if isinstance(playlist, str) else playlist.id
        try:
            resp = await self._call("getPlaylist", id=playlist_id)
        except EntityNotFound:
            logger.info("Subsonic: playlist %s not found", playlist_id)
            return []
        decoded = decode_list(resp, (("playlist.entry", ("playlist", "entry")),), self._song)
        return decoded.value if decoded.ok else []

    async def search(self, query: str) -> SearchResults:
        self._require_session()
        if not query.strip():
            return SearchResults()
        resp = await self._call("search3", query=query, songCount=SEARCH_COUNT,
                                albumCount=SEARCH_COUNT, artistCount=SEARCH_COUNT)
        result = dig(resp, ("searchResult3",), {})
        songs = decode_list(result, (("song", ("song",)),), self._song)
        albums = decode_list(result, (("album", ("album",)),), self._album)
        artists = decode_list(result, (("artist", ("artist",)),), self._artist)
        return SearchResults(
            songs=songs.value if songs.ok else (),
            albums=albums.value if albums.ok else (),
            artists=artists.value if artists.ok else (),
        )

    async def report_playback(self, song: UniversalSong) -> None:
        """Scrobble *song* as played now."""
        try:
            await self._call("scrobble", id=song.id, time=int(time.time() * 1000),
                             submission="true")
            logger.info("Subsonic: scrobbled %s", song.title)
        except (APIError, EntityNotFound, DecodingError) as e:
            logger.warning("Subsonic: scrobble failed: %s", e)

    # ── URL builders ──

    def _url(self, endpoint: str, **params) -> str | None:
        if self._session_token is None or not self.base_url:
            return None
        query = self._auth_params()
        query.update({k: v for k, v in params.items() if v is not None})
        return f"{self.base_url}/rest/{endpoint}?{urlencode(query)}"

    def stream_url(self, song) -> str | None:
        song_id = song if isinstance(song, str) else song.id
        if not song_id:
            return None
        return self._url("stream", id=song_id, maxBitRate=self.max_bitrate or None,
                         format=self.stream_format or None)

    def artwork_url(self, item) -> str | None:
        native = getattr(item, "native", None)
        cover = native.get("coverArt") if isinstance(native, dict) else None
        if not cover:
            return None
        return self._url("getCoverArt", id=cover, size=COVER_SIZE)
