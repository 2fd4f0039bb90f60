"""
Artwork fetching for the now-playing publisher.

Covers are downloaded (or read from disk for ``file://`` URLs), scaled down
to fit ``COVER_SIDE`` and re-encoded to JPEG with Pillow off the event loop.
Results are ``{"base64": str, "size": (w, h)}`` dicts.

Backend artwork URLs carry the session (Subsonic ``u``/``t``/``s``,
Audio Station ``_sid``), which changes on every login.  The cache keys on
the URL without those parameters so a re-login does not refetch every cover.
"""

import asyncio
import base64
import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from urllib.parse import parse_qsl, unquote, urlencode, urlparse

import aiohttp
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

COVER_SIDE = 600
MAX_COVER_BYTES = 200 * 1024
JPEG_QUALITIES = (85, 70, 55)
SESSION_PARAMS = frozenset({"u", "t", "s", "p", "_sid"})

_image_pool = ThreadPoolExecutor(max_workers=2)


def cache_key(url: str) -> str:
    """*url* without its session parameters."""
    parsed = urlparse(url)
    if not parsed.query:
        return url
    kept = sorted((k, v) for k, v in parse_qsl(parsed.query) if k not in SESSION_PARAMS)
    return parsed._replace(query=urlencode(kept)).geturl()


class ArtworkCache:
    """Bounded LRU of encoded covers."""

    def __init__(self, capacity: int = 64):
        self.capacity = capacity
        self._entries: OrderedDict[str, dict] = OrderedDict()

    def lookup(self, url: str) -> dict | None:
        key = cache_key(url)
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def store(self, url: str, artwork: dict) -> None:
        self._entries[cache_key(url)] = artwork
        self._entries.move_to_end(cache_key(url))
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Artwork cache full, dropped %s", urlparse(evicted).path)

    def __len__(self):
        return len(self._entries)


def encode_cover(image_bytes: bytes, side: int = COVER_SIDE) -> dict | None:
    """Scale to fit *side* x *side* and encode as JPEG; None if undecodable."""
    try:
        with Image.open(BytesIO(image_bytes)) as source:
            cover = source.convert("RGB") if source.mode != "RGB" else source.copy()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Unreadable cover image: %s", e)
        return None
    cover.thumbnail((side, side))

    data = b""
    for quality in JPEG_QUALITIES:
        buf = BytesIO()
        cover.save(buf, "JPEG", quality=quality, optimize=True)
        data = buf.getvalue()
        if len(data) <= MAX_COVER_BYTES:
            break
    return {"base64": base64.b64encode(data).decode("ascii"), "size": cover.size}


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


async def fetch_artwork(url: str, cache: ArtworkCache,
                        session: aiohttp.ClientSession | None = None) -> dict | None:
    """Fetch artwork from *url*; None if it cannot be fetched or decoded."""
    cached = cache.lookup(url)
    if cached is not None:
        return cached

    loop = asyncio.get_running_loop()
    parsed = urlparse(url)
    try:
        if parsed.scheme == "file":
            image_bytes = await loop.run_in_executor(
                None, _read_file, unquote(parsed.path))
        else:
            if session is None:
                logger.debug("No HTTP session for artwork %s", parsed.path)
                return None
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                resp.raise_for_status()
                image_bytes = await resp.read()
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        logger.warning("Artwork %s not fetched: %s", parsed.path, e)
        return None

    if not image_bytes:
        logger.warning("Artwork %s is empty", parsed.path)
        return None

    artwork = await loop.run_in_executor(_image_pool, encode_cover, image_bytes)
    if artwork:
        cache.store(url, artwork)
    return artwork
