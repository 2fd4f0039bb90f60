"""Tests for cover fetching, scaling and caching."""

from io import BytesIO

import pytest
from PIL import Image

from tapedeck.lib.artwork import COVER_SIDE, ArtworkCache, cache_key, encode_cover, fetch_artwork


def png(width, height, mode="RGBA"):
    buf = BytesIO()
    Image.new(mode, (width, height)).save(buf, "PNG")
    return buf.getvalue()


class TestCacheKey:
    def test_session_params_ignored(self):
        a = "https://music.example.org/rest/getCoverArt?id=al1&u=me&t=abc&s=salt1&size=600"
        b = "https://music.example.org/rest/getCoverArt?size=600&id=al1&u=me&t=def&s=salt2"
        assert cache_key(a) == cache_key(b)
        assert "t=" not in cache_key(a)

    def test_synology_sid_ignored(self):
        a = "https://nas:5001/webapi/cover.cgi?album_name=X&_sid=one"
        b = "https://nas:5001/webapi/cover.cgi?album_name=X&_sid=two"
        assert cache_key(a) == cache_key(b)

    def test_different_covers_differ(self):
        assert cache_key("http://h/c?id=1&t=x") != cache_key("http://h/c?id=2&t=x")
        assert cache_key("file:///music/a/cover.jpg") == "file:///music/a/cover.jpg"


class TestArtworkCache:
    def test_least_recently_used_evicted(self):
        cache = ArtworkCache(capacity=2)
        cache.store("http://h/c?id=1", {"n": 1})
        cache.store("http://h/c?id=2", {"n": 2})
        assert cache.lookup("http://h/c?id=1") == {"n": 1}
        cache.store("http://h/c?id=3", {"n": 3})
        assert len(cache) == 2
        assert cache.lookup("http://h/c?id=2") is None
        assert cache.lookup("http://h/c?id=1&_sid=new") == {"n": 1}


class TestEncodeCover:
    def test_scaled_to_cover_side(self):
        artwork = encode_cover(png(1200, 800))
        assert artwork["size"] == (COVER_SIDE, 400)
        assert artwork["base64"]

    def test_small_image_not_enlarged(self):
        assert encode_cover(png(100, 100, "P"))["size"] == (100, 100)

    def test_garbage(self):
        assert encode_cover(b"not an image") is None


class TestFetch:
    @pytest.mark.asyncio
    async def test_file_url_fetched_once(self, tmp_path):
        path = tmp_path / "cover.png"
        path.write_bytes(png(50, 40, "RGB"))
        cache = ArtworkCache()
        artwork = await fetch_artwork(path.as_uri(), cache)
        assert artwork["size"] == (50, 40)
        path.unlink()
        assert await fetch_artwork(path.as_uri(), cache) == artwork

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        assert await fetch_artwork((tmp_path / "none.jpg").as_uri(), ArtworkCache()) is None

    @pytest.mark.asyncio
    async def test_http_without_session(self):
        assert await fetch_artwork("http://h/cover.jpg", ArtworkCache()) is None
