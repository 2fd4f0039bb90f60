"""Shared fixtures: a recording media engine, a song factory, isolated config."""

import json

import pytest

from tapedeck.lib import config
from tapedeck.lib.media_engine import MediaEngine
from tapedeck.models import UniversalSong


class FakeEngine(MediaEngine):
    """Media engine that records calls and emits events on demand."""

    def __init__(self, duration: float = 200.0):
        super().__init__()
        self.calls = []
        self.loaded = []
        self.duration = duration
        self.pos = 0.0

    async def load(self, url: str) -> int:
        token = self.next_token()
        self.calls.append(("load", url))
        self.loaded.append((token, url))
        self.pos = 0.0
        return token

    @property
    def token(self):
        return self.loaded[-1][0] if self.loaded else None

    async def play(self):
        self.calls.append(("play",))

    async def pause(self):
        self.calls.append(("pause",))

    async def seek(self, seconds: float):
        self.calls.append(("seek", seconds))
        self.pos = seconds

    async def stop(self):
        self.calls.append(("stop",))

    async def position(self) -> float:
        return self.pos

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)

    async def ready(self, token=None, duration=None):
        await self.emit("ready", token=self.token if token is None else token,
                        duration=self.duration if duration is None else duration)

    async def end(self, token=None):
        await self.emit("end", token=self.token if token is None else token)

    async def fail(self, message="decoder error", token=None):
        await self.emit("error", token=self.token if token is None else token, message=message)


def make_song(n, *, playable=True, duration=100.0, artist="Artist", album="Album", source="test"):
    return UniversalSong(
        id=f"s{n}",
        title=f"Song {n}",
        artist=artist,
        album=album,
        duration=duration,
        track_number=n,
        stream_url=f"http://media/{n}.mp3" if playable else None,
        source=source,
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def songs():
    return [make_song(i) for i in range(1, 6)]


@pytest.fixture(autouse=True)
def tapedeck_config(tmp_path, monkeypatch):
    """Point the config loader at a temp file; returns a writer."""
    path = tmp_path / "config.json"
    path.write_text("{}")
    monkeypatch.setenv("TAPEDECK_CONFIG", str(path))

    def write(data: dict):
        path.write_text(json.dumps(data))
        return config.reload_config()

    config.reload_config()
    yield write
    monkeypatch.delenv("TAPEDECK_CONFIG", raising=False)
    config._config = None


@pytest.fixture(autouse=True)
def isolated_credentials(tmp_path, monkeypatch):
    """Never read or write a real credentials store."""
    store = tmp_path / "backends.json"
    monkeypatch.setenv("TAPEDECK_CREDENTIALS", str(store))
    return store
