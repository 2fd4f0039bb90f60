# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Media engine: the one audio output every backend shares.

The engine knows nothing about queues or backends.  It loads a URL, plays,
pauses, seeks, stops, and reports back through a single listener:

    engine.set_listener(callback)      # async def callback(event, data)

Events:
    "ready"  {"token", "duration"}     media opened, duration known (0 if not)
    "error"  {"token", "message"}      media could not be opened or died
    "end"    {"token"}                 playback reached the end naturally

``token`` is the value returned by the ``load()`` that produced the event,
so late events from a superseded load can be recognised and dropped.

MpvEngine drives an mpv subprocess over its JSON IPC socket.
"""

import asyncio
import itertools
import json
import logging
import os
import socket
import subprocess
from abc import ABC, abstractmethod

from tapedeck.lib.config import cfg

logger = logging.getLogger(__name__)


class MediaEngine(ABC):
    """Interface the playback state machine drives."""

    def __init__(self):
        self._listener = None
        self._tokens = itertools.count(1)

    def set_listener(self, callback) -> None:
        """Route future events to *callback* (replaces the previous one)."""
        self._listener = callback

    def next_token(self) -> int:
        return next(self._tokens)

    async def emit(self, event: str, **data) -> None:
        if self._listener is None:
            logger.debug("Media event %s dropped (no listener)", event)
            return
        await self._listener(event, data)

    @abstractmethod
    async def load(self, url: str) -> int:
        """Open *url* paused.  Returns the load token."""

    @abstractmethod
    async def play(self) -> None: ...

    @abstractmethod
    async def pause(self) -> None: ...

    @abstractmethod
    async def seek(self, seconds: float) -> None: ...

    @abstractmethod
    async def stop(self) -> None: ...

    @abstractmethod
    async def position(self) -> float: ...


class MpvEngine(MediaEngine):
    """mpv subprocess controlled over --input-ipc-server."""

    READY_TIMEOUT = 20.0
    POLL_INTERVAL = 0.25

    def __init__(self, ao: str | None = None, ipc_socket: str | None = None):
        super().__init__()
        self.ao = ao or cfg("media", "ao", default="pulse")
        self._ipc_socket = ipc_socket or cfg(
            "media", "ipc_socket", default=f"/tmp/tapedeck-mpv-{os.getpid()}.sock")
        self.process = None
        self._watcher_task = None
        self._request_ids = itertools.count(1)
        self._token = 0

    async def load(self, url: str) -> int:
        await self.stop()
        self._token = token = self.next_token()
        env = os.environ.copy()
        env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
        try:
            self.process = subprocess.Popen([
                "mpv",
                f"--ao={self.ao}",
                "--pause",
                "--no-video", "--no-terminal",
                f"--input-ipc-server={self._ipc_socket}",
                url,
            ], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, env=env)
        except OSError as e:
            logger.error("Could not start mpv: %s", e)
            await self.emit("error", token=token, message=str(e))
            return token
        self._watcher_task = asyncio.create_task(self._watch_process(token))
        logger.info("Loading %s", url.split("?", 1)[0])
        return token

    async def _watch_process(self, token):
        """Report ready once mpv knows the duration, then end/error on exit."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.READY_TIMEOUT
        ready = False
        try:
            while self.process and self.process.poll() is None:
                if not ready:
                    duration = await self._get_property("duration")
                    if duration is not None:
                        ready = True
                        await self.emit("ready", token=token, duration=float(duration))
                    elif loop.time() > deadline:
                        ready = True
                        logger.warning("mpv reported no duration, treating as stream")
                        await self.emit("ready", token=token, duration=0.0)
                await asyncio.sleep(self.POLL_INTERVAL)
            code = self.process.returncode if self.process else None
            self.process = None
            if not ready or code not in (0, None):
                await self.emit("error", token=token, message=f"mpv exited with code {code}")
            else:
                await self.emit("end", token=token)
        except asyncio.CancelledError:
            pass

    async def play(self):
        await self._command("set_property", "pause", False)

    async def pause(self):
        await self._command("set_property", "pause", True)

    async def seek(self, seconds: float):
        await self._command("seek", float(seconds), "absolute")

    async def position(self) -> float:
        value = await self._get_property("time-pos")
        return float(value) if value is not None else 0.0

    async def stop(self):
        if self._watcher_task:
            self._watcher_task.cancel()
            self._watcher_task = None
        if self.process:
            self.process.terminate()
            try:
                await asyncio.get_running_loop().run_in_executor(
                    None, self.process.wait, 2)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None

    # ── IPC ──

    async def _command(self, *args):
        if not self.process:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._ipc_sync, list(args))

    async def _get_property(self, name):
        return await self._command("get_property", name)

    def _ipc_sync(self, command):
        request_id = next(self._request_ids)
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        s.settimeout(2)
        try:
            s.connect(self._ipc_socket)
            s.sendall((json.dumps({"command": command, "request_id": request_id}) + "\n").encode())
            buf = b""
            while True:
                chunk = s.recv(4096)
                if not chunk:
                    return None
                buf += chunk
                while b"\n" in buf:
                    line, buf = buf.split(b"\n", 1)
                    msg = json.loads(line)
                    # Skip async event lines
                    if msg.get("request_id") != request_id:
                        continue
                    if msg.get("error") != "success":
                        return None
                    return msg.get("data")
        except (OSError, ValueError) as e:
            logger.debug("mpv IPC %s failed: %s", command[0], e)
            return None
        finally:
            s.close()
