"""Tests for the Audio Station adapter (HTTP replaced by AsyncMock)."""

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import pytest

from tapedeck.adapters.audiostation import (
    ALBUM_PATH,
    ARTIST_PATH,
    AUTH_PATH,
    SONG_PATH,
    AudioStationAdapter,
)
from tapedeck.errors import (
    APIError,
    AuthenticationFailed,
    InvalidConfiguration,
    NotAuthenticated,
)
from tapedeck.lib.credentials import BackendSettings
from tapedeck.models import UniversalAlbum, UniversalArtist, UniversalSong

BASE = "https://nas.local:5001"


def raw_song(sid, title, artist, album, track=1, duration=200):
    return {
        "id": sid,
        "title": title,
        "additional": {
            "song_tag": {"artist": artist, "album": album, "track": track},
            "song_audio": {"duration": duration},
        },
    }


def ok(**data):
    return {"success": True, "data": data}


@pytest.fixture
def adapter():
    a = AudioStationAdapter(BackendSettings(BASE, "me", "secret"))
    a._request_json = AsyncMock()
    return a


@pytest.fixture
def logged_in(adapter):
    adapter._session_token = "sid123"
    return adapter


def query(url):
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestAuthentication:
    """Login, logout and session error mapping."""

    @pytest.mark.asyncio
    async def test_login(self, adapter):
        adapter._request_json.return_value = ok(sid="sid123")
        assert await adapter.authenticate() == "sid123"
        assert adapter.authenticated
        url, params = adapter._request_json.await_args.args
        assert url == BASE + AUTH_PATH
        assert params["method"] == "Login"
        assert params["version"] == "6"
        assert params["account"] == "me"
        assert params["session"] == "AudioStation"
        assert adapter._request_json.await_args.kwargs["method"] == "POST"

    @pytest.mark.asyncio
    async def test_rejected_login(self, adapter):
        adapter._request_json.return_value = {"success": False, "error": {"code": 400}}
        with pytest.raises(AuthenticationFailed) as exc:
            await adapter.authenticate()
        assert exc.value.code == 400
        assert not adapter.authenticated

    @pytest.mark.asyncio
    async def test_missing_settings(self):
        adapter = AudioStationAdapter(BackendSettings(BASE, "me", ""))
        adapter._request_json = AsyncMock()
        with pytest.raises(InvalidConfiguration):
            await adapter.authenticate()
        adapter._request_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_library_call_without_session_fails_fast(self, adapter):
        with pytest.raises(NotAuthenticated):
            await adapter.list_albums()
        with pytest.raises(NotAuthenticated):
            await adapter.songs_for_album("x_y")
        adapter._request_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_error_codes(self, logged_in):
        logged_in._request_json.return_value = {"success": False, "error": {"code": 119}}
        with pytest.raises(NotAuthenticated):
            await logged_in.list_albums()

    @pytest.mark.asyncio
    async def test_other_error_codes(self, logged_in):
        logged_in._request_json.return_value = {"success": False, "error": {"code": 120}}
        with pytest.raises(APIError) as exc:
            await logged_in.list_playlists()
        assert exc.value.code == 120

    @pytest.mark.asyncio
    async def test_logout_clears_session(self, logged_in):
        logged_in._request_json.return_value = {"success": True}
        await logged_in.logout()
        assert not logged_in.authenticated
        assert logged_in._request_json.await_args.args[1]["method"] == "Logout"
        assert logged_in._request_json.await_args.kwargs["method"] == "POST"

    @pytest.mark.asyncio
    async def test_calls_post_session_id(self, logged_in):
        logged_in._request_json.return_value = ok(albums=[])
        await logged_in.list_albums()
        url, params = logged_in._request_json.await_args.args
        assert url == BASE + ALBUM_PATH
        assert params["_sid"] == "sid123"
        assert logged_in._request_json.await_args.kwargs["method"] == "POST"


class TestConversion:
    @pytest.mark.asyncio
    async def test_songs_get_stream_and_artwork(self, logged_in):
        logged_in._request_json.return_value = ok(songs=[
            raw_song("music_1", "Radioactive", "Imagine Dragons", "Night Visions"),
        ])
        [song] = await logged_in.bulk_songs()
        assert song.id == "music_1"
        assert song.duration == 200
        stream = query(song.stream_url)
        assert stream["method"] == "stream"
        assert stream["id"] == "music_1"
        assert stream["_sid"] == "sid123"
        assert stream["format"] == "mp3"
        cover = query(song.artwork_url)
        assert cover["album_name"] == "Night Visions"
        assert cover["album_artist_name"] == "Imagine Dragons"

    @pytest.mark.asyncio
    async def test_album_gets_synthetic_id(self, logged_in):
        logged_in._request_json.return_value = ok(albums=[
            {"name": "Night Visions", "album_artist": "Imagine Dragons", "year": 2012},
        ])
        [album] = await logged_in.list_albums()
        assert album.id == "imagine_dragons_night_visions"
        assert album.artist == "Imagine Dragons"
        assert album.year == 2012

    @pytest.mark.asyncio
    async def test_top_level_shape_accepted(self, logged_in):
        logged_in._request_json.return_value = {"success": True, "playlists": [{"name": "Mix"}]}
        [playlist] = await logged_in.list_playlists()
        assert playlist.id == "mix"

    @pytest.mark.asyncio
    async def test_unknown_shape_is_empty(self, logged_in):
        logged_in._request_json.return_value = ok(something_else=[])
        assert await logged_in.list_albums() == []

    @pytest.mark.asyncio
    async def test_artist_album_counts(self, logged_in):
        responses = {
            ARTIST_PATH: ok(artists=[{"name": "Imagine Dragons"}, {"name": "Daft Punk"}]),
            ALBUM_PATH: ok(albums=[
                {"name": "Night Visions", "album_artist": "Imagine Dragons"},
                {"name": "Evolve", "album_artist": "Imagine Dragons"},
                {"name": "Origins", "album_artist": "imagine dragons"},
                {"name": "Discovery", "album_artist": "Daft Punk"},
            ]),
        }
        logged_in._request_json.side_effect = lambda url, params, method="GET": \
            responses[url[len(BASE):]]
        artists = await logged_in.list_artists()
        counts = {a.name: a.album_count for a in artists}
        assert counts == {"Imagine Dragons": 3, "Daft Punk": 1}


class TestURLBuilders:
    """Pure builders: no I/O, None when something is missing."""

    def test_no_session_no_urls(self, adapter):
        song = UniversalSong(id="music_1", title="t", album="A", artist="B")
        assert adapter.stream_url(song) is None
        assert adapter.artwork_url(song) is None

    def test_transcoded_variant(self, logged_in):
        params = query(logged_in.transcoded_stream_url("music_1", "mp3", 192))
        assert params["method"] == "transcode"
        assert params["bitrate"] == "192"

    def test_artwork_needs_names(self, logged_in):
        assert logged_in.artwork_url(UniversalAlbum(id="x", name="", subtitle="B")) is None
        assert logged_in.artwork_url(UniversalArtist(id="x", name="B")) is None


class TestResolution:
    """Container songs come from the resolver."""

    @pytest.mark.asyncio
    async def test_album_by_synthetic_id(self, logged_in):
        responses = {
            ALBUM_PATH: ok(albums=[{"name": "Night Visions", "album_artist": "Imagine Dragons"}]),
            SONG_PATH: ok(songs=[
                raw_song("2", "Demons", "Imagine Dragons", "night visions", track=3),
                raw_song("1", "Radioactive", "Imagine Dragons", "Night Visions", track=1),
                raw_song("9", "Believer", "Imagine Dragons", "Evolve"),
            ]),
        }
        logged_in._request_json.side_effect = lambda url, params, method="GET": \
            responses[url[len(BASE):]]
        songs = await logged_in.songs_for_album("imagine_dragons_night_visions")
        assert [s.id for s in songs] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_unknown_album_id_is_empty(self, logged_in):
        logged_in._request_json.return_value = ok(albums=[])
        assert await logged_in.songs_for_album("nope") == []

    @pytest.mark.asyncio
    async def test_artist_query_matrix(self, logged_in):
        calls = []

        async def fake(url, params, method="GET"):
            calls.append(params)
            if len(calls) == 1:
                return {"success": False, "error": {"code": 101}}
            return ok(songs=[raw_song("7", "Believer", "Imagine Dragons", "Evolve")])

        logged_in._request_json.side_effect = fake
        artist = UniversalArtist(id="imagine_dragons", name="Imagine Dragons")
        songs = await logged_in.songs_for_artist(artist)
        assert [s.id for s in songs] == ["7"]
        assert [c["method"] for c in calls] == ["list", "search"]
        assert all(c["artist"] == "Imagine Dragons" for c in calls)

    @pytest.mark.asyncio
    async def test_artist_matrix_falls_back_to_bulk(self, logged_in):
        async def fake(url, params, method="GET"):
            if params.get("artist"):
                return ok(songs=[])
            return ok(songs=[
                raw_song("1", "Radioactive", "Imagine Dragons", "Night Visions"),
                raw_song("2", "Get Lucky", "Daft Punk", "RAM"),
            ])

        logged_in._request_json.side_effect = fake
        songs = await logged_in.songs_for_artist(
            UniversalArtist(id="imagine_dragons", name="imagine dragons"))
        assert [s.id for s in songs] == ["1"]
        assert logged_in._request_json.await_count == 4

    @pytest.mark.asyncio
    async def test_search(self, logged_in):
        logged_in._request_json.return_value = ok(
            songs=[raw_song("1", "Radioactive", "Imagine Dragons", "Night Visions")],
            albums=[{"name": "Night Visions", "album_artist": "Imagine Dragons"}],
        )
        results = await logged_in.search("radio")
        assert [s.id for s in results.songs] == ["1"]
        assert len(results.albums) == 1
        assert results.artists == ()
        params = logged_in._request_json.await_args.args[1]
        assert params["method"] == "search"
        assert params["keyword"] == "radio"

    @pytest.mark.asyncio
    async def test_blank_search_skips_request(self, logged_in):
        results = await logged_in.search("   ")
        assert results.empty
        logged_in._request_json.assert_not_awaited()
