# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Synology Audio Station adapter.

Audio Station's Web API has song IDs but no stable album/artist/playlist
IDs and no dependable "songs of this album" call.  Containers therefore get
synthetic identities (see models.synthetic_id) and their songs are found by
the entity resolver against the bulk song list.

Request shape (every call):

    {base}/webapi/AudioStation/{resource}.cgi
        api=SYNO.AudioStation.<Resource>  version=N  method=list|search|...
        _sid=<session>  limit=...  additional=song_tag,song_audio

    → {"success": true,  "data": {...}}
    → {"success": false, "error": {"code": 119}}

Stream and cover URLs are built locally from the session ID and the
song ID / album + artist names; the cover endpoint is addressed by name
because Audio Station has no artwork ID.
"""

import logging
from dataclasses import replace
from urllib.parse import urlencode

from tapedeck.errors import (
    APIError,
    AuthenticationFailed,
    DecodingError,
    NetworkError,
    NotAuthenticated,
)
from tapedeck.lib.config import cfg
from tapedeck.lib.credentials import BackendSettings
from tapedeck.lib.decoding import (
    Decoded,
    NOT_RECOGNISED,
    as_float,
    as_int,
    decode_list,
    dig,
    first_str,
)
from tapedeck.lib.matching import names_match
from tapedeck.models import (
    AUDIO_STATION,
    UNKNOWN_ARTIST,
    SearchResults,
    UniversalAlbum,
    UniversalArtist,
    UniversalPlaylist,
    UniversalSong,
    synthetic_id,
)
from tapedeck.resolution import EntityResolver

from .base import BackendAdapter

logger = logging.getLogger(__name__)

AUTH_PATH = "/webapi/auth.cgi"
SONG_PATH = "/webapi/AudioStation/song.cgi"
ALBUM_PATH = "/webapi/AudioStation/album.cgi"
ARTIST_PATH = "/webapi/AudioStation/artist.cgi"
PLAYLIST_PATH = "/webapi/AudioStation/playlist.cgi"
SEARCH_PATH = "/webapi/AudioStation/search.cgi"
COVER_PATH = "/webapi/AudioStation/cover.cgi"
STREAM_PATH = "/webapi/AudioStation/stream.cgi"

SONG_ADDITIONAL = "song_tag,song_audio"
BULK_SONG_LIMIT = 50000
CONTAINER_LIMIT = 10000
PLAYLIST_LIMIT = 100000

# Session missing/expired, permission denied
SESSION_ERROR_CODES = {105, 106, 107, 119}

SONG_SHAPES = (
    ("data.songs", ("data", "songs")),
    ("songs", ("songs",)),
)
ALBUM_SHAPES = (
    ("data.albums", ("data", "albums")),
    ("albums", ("albums",)),
)
ARTIST_SHAPES = (
    ("data.artists", ("data", "artists")),
    ("artists", ("artists",)),
)
PLAYLIST_SHAPES = (
    ("data.playlists", ("data", "playlists")),
    ("playlists", ("playlists",)),
)


class AudioStationAdapter(BackendAdapter):
    id = AUDIO_STATION
    name = "Audio Station"

    def __init__(self, settings=None, session=None):
        super().__init__(settings, session)
        self.resolver = EntityResolver(self)
        self.stream_format = cfg("audiostation", "format", default="mp3")
        self.bitrate = cfg("audiostation", "bitrate", default=320)

    # ── Session ──

    async def authenticate(self, settings: BackendSettings | None = None) -> str:
        if settings is not None:
            self.configure(settings)
        self._require_settings()
        body = await self._request_json(self.base_url + AUTH_PATH, {
            "api": "SYNO.API.Auth",
            "version": "6",
            "method": "Login",
            "account": self.settings.username,
            "passwd": self.settings.password,
            "session": "AudioStation",
            "format": "sid",
        }, method="POST")
        sid = dig(body, ("data", "sid"))
        if not isinstance(body, dict) or not body.get("success") or not sid:
            code = as_int(dig(body, ("error", "code")))
            self._session_token = None
            raise AuthenticationFailed(f"Audio Station login failed (code {code})", code)
        self._session_token = sid
        logger.info("Audio Station: logged in as %s at %s", self.settings.username, self.base_url)
        return sid

    async def logout(self) -> None:
        sid = self._session_token
        await super().logout()
        if not sid:
            return
        try:
            await self._request_json(self.base_url + AUTH_PATH, {
                "api": "SYNO.API.Auth", "version": "6", "method": "Logout",
                "session": "AudioStation", "_sid": sid,
            }, method="POST")
        except (NetworkError, DecodingError, NotAuthenticated) as e:
            logger.info("Audio Station: logout failed: %s", e)

    async def _call(self, path: str, params: dict) -> dict:
        """POST to *path* with the session; raise on ``success: false``."""
        query = dict(params, _sid=self._require_session())
        body = await self._request_json(self.base_url + path, query, method="POST")
        if not isinstance(body, dict):
            raise DecodingError(f"{path}: response is not an object")
        if body.get("success"):
            return body
        code = as_int(dig(body, ("error", "code")))
        if code in SESSION_ERROR_CODES:
            raise NotAuthenticated(f"Audio Station session rejected (code {code})")
        raise APIError(f"{params.get('api')}.{params.get('method')} failed (code {code})", code)

    # ── Conversion ──

    def _song(self, entry: dict) -> UniversalSong:
        tag = dig(entry, ("additional", "song_tag"), {})
        audio = dig(entry, ("additional", "song_audio"), {})
        song = UniversalSong(
            id=str(entry["id"]),
            title=first_str(entry, "title") or "",
            artist=first_str(tag, "artist", "album_artist") or UNKNOWN_ARTIST,
            album=first_str(tag, "album"),
            duration=as_float(audio.get("duration")),
            track_number=as_int(tag.get("track")),
            source=AUDIO_STATION,
            native=entry,
        )
        return song.with_stream(self.stream_url(song)).with_artwork(self.artwork_url(song))

    def _album(self, entry: dict) -> UniversalAlbum:
        name = first_str(entry, "name") or ""
        artist = first_str(entry, "album_artist", "display_artist", "artist") or UNKNOWN_ARTIST
        album = UniversalAlbum(
            id=synthetic_id(artist, name),
            name=name,
            subtitle=artist,
            year=as_int(entry.get("year")),
            source=AUDIO_STATION,
            native=entry,
        )
        return replace(album, artwork_url=self.artwork_url(album))

    def _artist(self, entry: dict) -> UniversalArtist:
        name = first_str(entry, "name") or UNKNOWN_ARTIST
        return UniversalArtist(id=synthetic_id(name), name=name,
                               source=AUDIO_STATION, native=entry)

    def _playlist(self, entry: dict) -> UniversalPlaylist:
        name = first_str(entry, "name") or ""
        return UniversalPlaylist(
            id=synthetic_id(name),
            name=name,
            subtitle=first_str(entry, "library") or "",
            source=AUDIO_STATION,
            native=entry,
        )

    def _decode(self, body, shapes, item, what) -> list:
        decoded = decode_list(body, shapes, item)
        if not decoded.ok:
            logger.warning("Audio Station: unrecognised %s response", what)
            return []
        return decoded.value

    # ── Library ──

    async def list_albums(self) -> list[UniversalAlbum]:
        body = await self._call(ALBUM_PATH, {
            "api": "SYNO.AudioStation.Album", "version": "2", "method": "list",
            "limit": CONTAINER_LIMIT, "additional": SONG_ADDITIONAL,
        })
        return self._decode(body, ALBUM_SHAPES, self._album, "album")

    async def list_artists(self) -> list[UniversalArtist]:
        body = await self._call(ARTIST_PATH, {
            "api": "SYNO.AudioStation.Artist", "version": "2", "method": "list",
            "limit": CONTAINER_LIMIT,
        })
        artists = self._decode(body, ARTIST_SHAPES, self._artist, "artist")
        if not artists:
            return artists
        try:
            albums = await self.list_albums()
        except (NetworkError, APIError, DecodingError) as e:
            logger.warning("Audio Station: album counts unavailable: %s", e)
            return artists
        return [replace(a, album_count=sum(1 for al in albums if names_match(al.artist, a.name)))
                for a in artists]

    async def list_playlists(self) -> list[UniversalPlaylist]:
        body = await self._call(PLAYLIST_PATH, {
            "api": "SYNO.AudioStation.Playlist", "version": "1", "method": "list",
            "library": "all", "limit": PLAYLIST_LIMIT,
        })
        return self._decode(body, PLAYLIST_SHAPES, self._playlist, "playlist")

    async def songs_for_album(self, album) -> list[UniversalSong]:
        self._require_session()
        if isinstance(album, str):
            album = await self._lookup(self.list_albums, album, "album")
            if album is None:
                return []
        return await self.resolver.songs_for_album(album)

    async def songs_for_artist(self, artist) -> list[UniversalSong]:
        self._require_session()
        if isinstance(artist, str):
            artist = await self._lookup(self.list_artists, artist, "artist")
            if artist is None:
                return []
        return await self.resolver.songs_for_artist(artist)

    async def songs_for_playlist(self, playlist) -> list[UniversalSong]:
        self._require_session()
        if isinstance(playlist, str):
            playlist = await self._lookup(self.list_playlists, playlist, "playlist")
            if playlist is None:
                return []
        return await self.resolver.songs_for_playlist(playlist)

    async def _lookup(self, lister, identity: str, what: str):
        for item in await lister():
            if item.id == identity:
                return item
        logger.info("Audio Station: no %s with id %s", what, identity)
        return None

    async def search(self, query: str) -> SearchResults:
        self._require_session()
        if not query.strip():
            return SearchResults()
        body = await self._call(SEARCH_PATH, {
            "api": "SYNO.AudioStation.Search", "version": "1", "method": "search",
            "keyword": query, "additional": SONG_ADDITIONAL,
        })
        return SearchResults(
            songs=self._decode(body, SONG_SHAPES, self._song, "search song"),
            albums=decode_list(body, ALBUM_SHAPES, self._album).value or (),
            artists=decode_list(body, ARTIST_SHAPES, self._artist).value or (),
        )

    # ── Resolution source (used by EntityResolver) ──

    async def bulk_songs(self) -> list[UniversalSong]:
        body = await self._call(SONG_PATH, {
            "api": "SYNO.AudioStation.Song", "version": "2", "method": "list",
            "library": "all", "limit": BULK_SONG_LIMIT, "additional": SONG_ADDITIONAL,
        })
        return self._decode(body, SONG_SHAPES, self._song, "song list")

    async def search_songs(self, query: str) -> list[UniversalSong]:
        return list((await self.search(query)).songs)

    def artist_query_shapes(self, artist: str) -> list[dict]:
        base = {"api": "SYNO.AudioStation.Song", "version": "2"}
        return [
            dict(base, method="list", artist=artist,
                 additional=SONG_ADDITIONAL, limit=CONTAINER_LIMIT),
            dict(base, method="search", title="", artist=artist,
                 additional=SONG_ADDITIONAL, limit=CONTAINER_LIMIT),
            dict(base, method="list", library="all", artist=artist,
                 sort_by="album", sort_direction="ASC",
                 additional=SONG_ADDITIONAL, limit=CONTAINER_LIMIT),
        ]

    async def query_songs(self, params: dict) -> Decoded:
        body = await self._call(SONG_PATH, params)
        decoded = decode_list(body, SONG_SHAPES, self._song)
        return decoded if decoded.ok else NOT_RECOGNISED

    # ── URL builders ──

    def stream_url(self, song) -> str | None:
        song_id = song if isinstance(song, str) else song.id
        if not self._session_token or not song_id or not self.base_url:
            return None
        return self.base_url + STREAM_PATH + "?" + urlencode({
            "api": "SYNO.AudioStation.Stream",
            "version": "2",
            "method": "stream",
            "id": song_id,
            "format": self.stream_format,
            "bitrate": self.bitrate,
            "_sid": self._session_token,
        })

    def transcoded_stream_url(self, song, fmt: str = "mp3", bitrate: int = 320) -> str | None:
        """Server-side transcoded variant of stream_url()."""
        song_id = song if isinstance(song, str) else song.id
        if not self._session_token or not song_id or not self.base_url:
            return None
        return self.base_url + STREAM_PATH + "?" + urlencode({
            "api": "SYNO.AudioStation.Stream",
            "version": "2",
            "method": "transcode",
            "id": song_id,
            "format": fmt,
            "bitrate": bitrate,
            "_sid": self._session_token,
        })

    def artwork_url(self, item) -> str | None:
        if isinstance(item, UniversalSong):
            album, artist = item.album, item.artist
        elif isinstance(item, UniversalAlbum):
            album, artist = item.name, item.artist
        else:
            return None
        if not self._session_token or not album or not artist or not self.base_url:
            return None
        return self.base_url + COVER_PATH + "?" + urlencode({
            "api": "SYNO.AudioStation.Cover",
            "output_default": "true",
            "is_hr": "true",
            "version": "3",
            "library": "shared",
            "method": "getcover",
            "view": "default",
            "album_name": album,
            "album_artist_name": artist,
            "_sid": self._session_token,
        })
