# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Entity resolution for backends without container → song linkage.

Audio Station can list albums, artists and playlists, but has no reliable
"songs of this album" call.  The resolver fetches the bulk song list and
keeps the songs that belong to the container, trying rules in order until
one produces something:

  1. exact (case-insensitive) match of the song's album — or artist, for an
     artist container — against the container name
  2. substring match in either direction; for albums the song's artist must
     also match the album artist by equality or substring
  3. playlists only: free-text search for the playlist name

An empty list is a normal outcome, not an error.

For artists the resolver first walks a short list of direct query shapes
supplied by the adapter (sequentially, stopping at the first non-empty
decoded result) and only then falls back to the bulk filter.

The adapter plugs in through ``ResolutionSource``:

    bulk_songs()               → every song the backend will list
    search_songs(query)        → free-text song search
    artist_query_shapes(name)  → ordered request parameter dicts
    query_songs(params)        → Decoded list of songs for one shape
"""

import logging
from typing import Protocol

from tapedeck.errors import APIError, DecodingError, NetworkError
from tapedeck.lib.decoding import Decoded
from tapedeck.lib.matching import contains_either, names_equal, names_match
from tapedeck.models import (
    UniversalAlbum,
    UniversalArtist,
    UniversalPlaylist,
    UniversalSong,
)

logger = logging.getLogger(__name__)


class ResolutionSource(Protocol):
    async def bulk_songs(self) -> list[UniversalSong]: ...

    async def search_songs(self, query: str) -> list[UniversalSong]: ...

    def artist_query_shapes(self, artist: str) -> list[dict]: ...

    async def query_songs(self, params: dict) -> Decoded: ...


# ── Pure matching rules ──

def _track_key(song: UniversalSong) -> int:
    return song.track_number or 0


def match_album(songs, album: str, artist: str | None) -> list[UniversalSong]:
    """Songs of *album* by *artist*, ordered by track number."""
    matched = [s for s in songs if names_equal(s.album, album)]
    if not matched:
        matched = [
            s for s in songs
            if contains_either(s.album, album) and names_match(s.artist, artist)
        ]
    return sorted(matched, key=_track_key)


def match_artist(songs, artist: str) -> list[UniversalSong]:
    """Songs by *artist*, in backend order."""
    matched = [s for s in songs if names_equal(s.artist, artist)]
    if not matched:
        matched = [s for s in songs if contains_either(s.artist, artist)]
    return matched


def match_playlist(songs, playlist: str) -> list[UniversalSong]:
    """Songs whose album field names the playlist, in backend order."""
    matched = [s for s in songs if names_equal(s.album, playlist)]
    if not matched:
        matched = [s for s in songs if contains_either(s.album, playlist)]
    return matched


# ── Resolver ──

class EntityResolver:
    """Best-effort song sets for containers on an identifier-poor backend."""

    def __init__(self, source: ResolutionSource):
        self.source = source

    async def songs_for_album(self, album: UniversalAlbum) -> list[UniversalSong]:
        songs = await self.source.bulk_songs()
        result = match_album(songs, album.name, album.artist)
        logger.info("Album '%s' by '%s': %d of %d songs matched",
                    album.name, album.artist, len(result), len(songs))
        return result

    async def songs_for_artist(self, artist: UniversalArtist) -> list[UniversalSong]:
        for i, params in enumerate(self.source.artist_query_shapes(artist.name), 1):
            try:
                decoded = await self.source.query_songs(params)
            except (NetworkError, APIError, DecodingError) as e:
                logger.info("Artist query shape %d failed: %s", i, e)
                continue
            if decoded.ok and decoded.value:
                logger.info("Artist '%s': shape %d (%s) returned %d songs",
                            artist.name, i, decoded.shape, len(decoded.value))
                return list(decoded.value)
            logger.debug("Artist query shape %d returned nothing", i)

        songs = await self.source.bulk_songs()
        result = match_artist(songs, artist.name)
        logger.info("Artist '%s': bulk filter matched %d of %d songs",
                    artist.name, len(result), len(songs))
        return result

    async def songs_for_playlist(self, playlist: UniversalPlaylist) -> list[UniversalSong]:
        songs = await self.source.bulk_songs()
        result = match_playlist(songs, playlist.name)
        if not result:
            result = await self.source.search_songs(playlist.name)
            logger.info("Playlist '%s': search fallback returned %d songs",
                        playlist.name, len(result))
        return result
