"""
Local files adapter.

Scans the configured music roots, reads tags with mutagen (falling back to
"Artist - Title" file names and the folder name for the album), and builds
an in-memory library.  Albums and artists have no IDs on disk, so they get
synthetic identities; songs are identified by their path relative to the
root they were found under.

Config:
    "local": {"paths": ["/media/music", "/home/me/Music"]}

Playlists are .m3u / .m3u8 files anywhere under a root.  Artwork is the
first folder/cover/front image next to the audio file.  Stream references
are file:// URIs, which mpv plays directly.
"""

import asyncio
import logging
import os
from collections import OrderedDict
from pathlib import Path

from mutagen import File as MutagenFile
from mutagen import MutagenError

from tapedeck.errors import InvalidConfiguration
from tapedeck.lib.config import cfg
from tapedeck.lib.credentials import BackendSettings
from tapedeck.lib.decoding import as_int
from tapedeck.lib.matching import names_equal
from tapedeck.models import (
    LOCAL,
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    SearchResults,
    UniversalAlbum,
    UniversalArtist,
    UniversalPlaylist,
    UniversalSong,
    normalize_name,
    synthetic_id,
)

from .base import BackendAdapter

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {'.flac', '.mp3', '.wma', '.aac', '.wav', '.m4a', '.ogg', '.opus'}
PLAYLIST_EXTENSIONS = {'.m3u', '.m3u8'}
ARTWORK_NAMES = ['folder', 'cover', 'front']
ARTWORK_EXTS = ['.jpg', '.jpeg', '.png']
SEARCH_LIMIT = 50


def get_tag_value(audio_file, tag_names):
    """Get tag value, trying multiple possible tag names."""
    for tag_name in tag_names:
        value = audio_file.get(tag_name)
        if value:
            if isinstance(value, list) and value:
                return str(value[0])
            return str(value)
    return None


def read_tags(path: Path) -> dict:
    """Title/artist/album/track/duration for *path*; file name as fallback."""
    stem = path.stem
    artist = None
    if ' - ' in stem:
        artist, stem = (p.strip() for p in stem.split(' - ', 1))
    tags = {
        'title': stem,
        'artist': artist,
        'album': path.parent.name or None,
        'track': None,
        'duration': 0.0,
    }
    try:
        audio = MutagenFile(path)
    except (MutagenError, OSError) as e:
        logger.debug("Unreadable tags in %s: %s", path.name, e)
        return tags
    if audio is None:
        return tags

    tags['title'] = get_tag_value(audio, ['TIT2', '\xa9nam', 'TITLE', 'title']) or tags['title']
    tags['artist'] = (get_tag_value(audio, ['TPE1', '\xa9ART', 'ARTIST', 'artist'])
                      or get_tag_value(audio, ['TPE2', 'aART', 'ALBUMARTIST', 'albumartist'])
                      or tags['artist'])
    tags['album'] = get_tag_value(audio, ['TALB', '\xa9alb', 'ALBUM', 'album']) or tags['album']
    tags['track'] = as_int(get_tag_value(audio, ['TRCK', 'TRACKNUMBER', 'tracknumber']))
    if tags['track'] is None:
        trkn = audio.get('trkn')
        if trkn and isinstance(trkn[0], tuple):
            tags['track'] = trkn[0][0]
    if getattr(audio, 'info', None) is not None:
        tags['duration'] = getattr(audio.info, 'length', 0.0) or 0.0
    return tags


def find_artwork(dir_path: Path) -> Path | None:
    """Find artwork image in directory (case-insensitive)."""
    try:
        names = {e.name.lower(): e for e in dir_path.iterdir() if e.is_file()}
    except OSError:
        return None
    for art_name in ARTWORK_NAMES:
        for ext in ARTWORK_EXTS:
            key = f"{art_name}{ext}"
            if key in names:
                return names[key]
    return None


class LocalAdapter(BackendAdapter):
    id = LOCAL
    name = "Local Files"

    def __init__(self, settings=None, session=None, root_paths=None):
        super().__init__(settings, session)
        paths = root_paths if root_paths is not None else cfg("local", "paths", default=[])
        self.roots = [Path(p).expanduser() for p in paths]
        self._songs: dict[str, UniversalSong] = {}
        self._playlists: dict[str, UniversalPlaylist] = {}

    # ── Session ──

    async def authenticate(self, settings: BackendSettings | None = None) -> str:
        """Scan the roots.  The "session" is just the scanned library."""
        roots = [r.resolve() for r in self.roots if r.is_dir()]
        if not roots:
            raise InvalidConfiguration("No local music folder found")
        loop = asyncio.get_running_loop()
        songs, playlists = await loop.run_in_executor(None, self._scan, roots)
        self._songs = songs
        self._playlists = playlists
        self._session_token = LOCAL
        logger.info("Local: %d songs, %d playlists under %d root(s)",
                    len(songs), len(playlists), len(roots))
        return self._session_token

    def _scan(self, roots):
        songs: dict[str, UniversalSong] = OrderedDict()
        playlist_files = []
        for root in roots:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith('.'))
                for filename in sorted(filenames):
                    path = Path(dirpath) / filename
                    ext = path.suffix.lower()
                    if ext in AUDIO_EXTENSIONS:
                        song = self._song(path, root)
                        songs[song.id] = song
                    elif ext in PLAYLIST_EXTENSIONS:
                        playlist_files.append((path, root))
        by_path = {s.native: s for s in songs.values()}
        playlists = OrderedDict()
        for path, root in playlist_files:
            playlist = self._read_playlist(path, root, by_path)
            playlists[playlist.id] = playlist
        return songs, playlists

    def _song(self, path: Path, root: Path) -> UniversalSong:
        tags = read_tags(path)
        artwork = find_artwork(path.parent)
        rel = path.relative_to(root).as_posix()
        return UniversalSong(
            id=f"{root.name}/{rel}",
            title=tags['title'],
            artist=tags['artist'] or UNKNOWN_ARTIST,
            album=tags['album'],
            duration=tags['duration'],
            track_number=tags['track'],
            artwork_url=artwork.as_uri() if artwork else None,
            stream_url=path.as_uri(),
            source=LOCAL,
            native=str(path),
        )

    def _read_playlist(self, path: Path, root: Path, by_path: dict) -> UniversalPlaylist:
        songs = []
        try:
            with open(path, encoding='utf-8', errors='replace') as f:
                lines = [line.strip() for line in f]
        except OSError as e:
            logger.warning("Cannot read playlist %s: %s", path, e)
            lines = []
        for line in lines:
            if not line or line.startswith('#'):
                continue
            target = Path(line)
            if not target.is_absolute():
                target = path.parent / target
            song = by_path.get(str(target.resolve()))
            if song is not None:
                songs.append(song)
        playlist = UniversalPlaylist(
            id=synthetic_id(path.relative_to(root).with_suffix('').as_posix()),
            name=path.stem,
            subtitle=root.name,
            source=LOCAL,
            native=str(path),
        )
        return playlist.with_songs(songs)

    # ── Library ──

    def _all_songs(self) -> list[UniversalSong]:
        self._require_session()
        return list(self._songs.values())

    async def list_albums(self) -> list[UniversalAlbum]:
        groups: dict[str, list[UniversalSong]] = OrderedDict()
        for song in self._all_songs():
            groups.setdefault(synthetic_id(song.artist, song.album or UNKNOWN_ALBUM), []).append(song)
        albums = []
        for album_id, songs in groups.items():
            first = songs[0]
            albums.append(UniversalAlbum(
                id=album_id,
                name=first.album or UNKNOWN_ALBUM,
                subtitle=first.artist,
                artwork_url=next((s.artwork_url for s in songs if s.artwork_url), None),
                source=LOCAL,
            ).with_songs(sorted(songs, key=lambda s: s.track_number or 0)))
        return sorted(albums, key=lambda a: normalize_name(a.name))

    async def list_artists(self) -> list[UniversalArtist]:
        albums = await self.list_albums()
        groups: dict[str, list[UniversalAlbum]] = OrderedDict()
        names = {}
        for album in albums:
            key = synthetic_id(album.artist)
            groups.setdefault(key, []).append(album)
            names.setdefault(key, album.artist)
        artists = []
        for artist_id, artist_albums in groups.items():
            songs = [s for a in artist_albums for s in a.songs]
            artist = UniversalArtist(id=artist_id, name=names[artist_id],
                                     album_count=len(artist_albums), source=LOCAL)
            artists.append(artist.with_songs(songs))
        return sorted(artists, key=lambda a: normalize_name(a.name))

    async def list_playlists(self) -> list[UniversalPlaylist]:
        self._require_session()
        return list(self._playlists.values())

    async def songs_for_album(self, album) -> list[UniversalSong]:
        album_id = album if isinstance(album, str) else album.id
        for candidate in await self.list_albums():
            if candidate.id == album_id:
                return list(candidate.songs)
        return []

    async def songs_for_artist(self, artist) -> list[UniversalSong]:
        name = artist.name if isinstance(artist, UniversalArtist) else None
        artist_id = artist if isinstance(artist, str) else artist.id
        return [s for s in self._all_songs()
                if synthetic_id(s.artist) == artist_id or names_equal(s.artist, name)]

    async def songs_for_playlist(self, playlist) -> list[UniversalSong]:
        self._require_session()
        playlist_id = playlist if isinstance(playlist, str) else playlist.id
        found = self._playlists.get(playlist_id)
        return list(found.songs) if found else []

    async def search(self, query: str) -> SearchResults:
        needle = normalize_name(query)
        songs = self._all_songs()
        if not needle:
            return SearchResults()
        hits = [s for s in songs
                if any(needle in normalize_name(f) for f in (s.title, s.artist, s.album))]
        albums = [a for a in await self.list_albums() if needle in normalize_name(a.name)]
        artists = [a for a in await self.list_artists() if needle in normalize_name(a.name)]
        return SearchResults(songs=hits[:SEARCH_LIMIT], albums=albums[:SEARCH_LIMIT],
                             artists=artists[:SEARCH_LIMIT])

    # ── URL builders ──

    def stream_url(self, song) -> str | None:
        if isinstance(song, str):
            song = self._songs.get(song)
        return song.stream_url if song is not None else None

    def artwork_url(self, item) -> str | None:
        return getattr(item, 'artwork_url', None)
