# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Tapedeck composition root.

Builds one playback service per enabled backend around a shared HTTP
session, media engine, audio session arbiter and now-playing publisher,
and keeps track of which backend is the active music source.

Library HTTP API (mounted on the publisher's server):
    GET  /sources                  enabled backends + which one is active
    POST /sources/{id}/activate    switch the active source
    POST /sources/{id}/settings    {"base_url", "username", "password"}
    POST /sources/{id}/rescan      re-read the library (local files)
    GET  /library/{kind}           album | artist | playlist
    GET  /search?q=                songs, albums, artists
    POST /queue                    {"kind": "album", "id": "...", "start": 0}
"""

import asyncio
import logging
import signal

import aiohttp
from aiohttp import web

from tapedeck.adapters import create_adapter
from tapedeck.arbiter import AudioSessionArbiter
from tapedeck.errors import InvalidConfiguration, TapedeckError
from tapedeck.lib.config import cfg
from tapedeck.lib.credentials import BackendSettings, normalize_base_url, save_backend_settings
from tapedeck.lib.media_engine import MpvEngine
from tapedeck.lib.source_base import CONTAINER_KINDS, error_result
from tapedeck.models import AUDIO_STATION, BACKENDS, LOCAL, SUBSONIC
from tapedeck.nowplaying import NowPlayingPublisher
from tapedeck.sources.audiostation import AudioStationService
from tapedeck.sources.local import LocalService
from tapedeck.sources.subsonic import SubsonicService

logger = logging.getLogger(__name__)

SERVICES = {
    SUBSONIC: SubsonicService,
    AUDIO_STATION: AudioStationService,
    LOCAL: LocalService,
}


class Tapedeck:
    def __init__(self, engine=None, publisher=None, arbiter=None, session=None,
                 sources=None, serve: bool = True):
        self._session = session
        self._owns_session = session is None
        self._serve = serve
        self.engine = engine or MpvEngine()
        self.arbiter = arbiter or AudioSessionArbiter()
        self.publisher = publisher
        self._source_ids = list(sources if sources is not None
                                else cfg("sources", default=list(BACKENDS)))
        self.services = {}
        self.active_id: str | None = None

    @property
    def active(self):
        return self.services.get(self.active_id) if self.active_id else None

    # ── Lifecycle ──

    async def start(self):
        if self._session is None:
            timeout = cfg("http", "timeout", default=30)
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=timeout),
            )
        if self.publisher is None:
            self.publisher = NowPlayingPublisher(http_session=self._session)
        self.publisher.add_routes(self.register_routes)

        for source_id in self._source_ids:
            cls = SERVICES.get(source_id)
            if cls is None:
                logger.warning("Unknown source '%s' — skipping", source_id)
                continue
            adapter = create_adapter(source_id, self._session)
            service = cls(adapter, self.engine, self.arbiter, self.publisher)
            await service.start()
            self.services[source_id] = service

        await self.publisher.start(serve=self._serve)

        default = cfg("default_source") or next(iter(self.services), None)
        if default in self.services:
            await self.switch_source(default)
        logger.info("Tapedeck started: %s (active: %s)",
                    ", ".join(self.services) or "no sources", self.active_id)

    async def stop(self):
        for service in list(self.services.values()):
            try:
                await service.stop()
            except Exception:
                logger.exception("Error stopping %s", service.name)
        if self.publisher:
            await self.publisher.stop()
        await self.engine.stop()
        if self._owns_session and self._session:
            await self._session.close()
        self._session = None
        logger.info("Tapedeck stopped")

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    # ── Source switching ──

    async def switch_source(self, source_id: str) -> dict:
        """Make *source_id* the active source.

        In-flight library calls of the previous source are cancelled and it
        stops playing, which releases the audio session.  An unreachable
        backend is still activated so its settings can be fixed.
        """
        service = self.services.get(source_id)
        if service is None:
            raise InvalidConfiguration(f"Source '{source_id}' is not enabled")
        previous = self.active
        if previous is not None and previous is not service:
            previous.cancel_pending()
            await previous.dispatch("stop")
            self.publisher.clear_delegate(previous)
        self.active_id = source_id

        available = await service.connect()
        if not available:
            logger.warning("Activating %s although it is unavailable", service.name)
        await self.publisher.broadcast("source_change", {
            "source": source_id,
            "name": service.name,
            "previous": previous.id if previous else None,
            "available": available,
        })
        logger.info("Active source: %s -> %s",
                    previous.id if previous else None, source_id)
        return {"status": "ok", "source": source_id, "available": available}

    async def configure_backend(self, source_id: str, base_url: str,
                                username: str, password: str) -> dict:
        service = self.services.get(source_id)
        if service is None:
            raise InvalidConfiguration(f"Source '{source_id}' is not enabled")
        settings = BackendSettings(normalize_base_url(base_url), username or "", password or "")
        if not settings.complete:
            raise InvalidConfiguration("Base URL, username and password are required")
        save_backend_settings(source_id, settings)
        service.cancel_pending()
        service.adapter.configure(settings)
        available = await service.connect()
        return {"status": "ok", "source": source_id, "available": available}

    # ── HTTP API ──

    def register_routes(self, app: web.Application):
        app.router.add_get('/sources', self._handle_sources)
        app.router.add_post('/sources/{id}/activate', self._handle_activate)
        app.router.add_post('/sources/{id}/settings', self._handle_settings)
        app.router.add_post('/sources/{id}/rescan', self._handle_rescan)
        app.router.add_get('/library/{kind}', self._handle_library)
        app.router.add_get('/search', self._handle_search)
        app.router.add_post('/queue', self._handle_queue)

    def _require_active(self):
        if self.active is None:
            raise InvalidConfiguration("No active source")
        return self.active

    async def _handle_sources(self, request):
        return web.json_response({
            "active": self.active_id,
            "sources": [
                {
                    "id": s.id,
                    "name": s.name,
                    "authenticated": s.adapter.authenticated,
                    "state": s.machine.state.value,
                }
                for s in self.services.values()
            ],
        })

    async def _handle_activate(self, request):
        try:
            result = await self.switch_source(request.match_info['id'])
        except TapedeckError as e:
            return web.json_response(error_result(e), status=404)
        return web.json_response(result)

    async def _handle_settings(self, request):
        try:
            data = await request.json()
        except ValueError:
            return web.json_response({"status": "error", "message": "Invalid JSON"}, status=400)
        try:
            result = await self.configure_backend(
                request.match_info['id'],
                data.get("base_url", ""),
                data.get("username", ""),
                data.get("password", ""),
            )
        except TapedeckError as e:
            return web.json_response(error_result(e), status=400)
        return web.json_response(result)

    async def _handle_rescan(self, request):
        service = self.services.get(request.match_info['id'])
        if service is None or not hasattr(service, 'rescan'):
            return web.json_response({"status": "error", "message": "Cannot rescan"}, status=404)
        try:
            return web.json_response(await service.rescan())
        except TapedeckError as e:
            return web.json_response(error_result(e), status=502)

    async def _handle_library(self, request):
        kind = request.match_info['kind']
        if kind not in CONTAINER_KINDS:
            return web.json_response({"status": "error", "message": f"Unknown kind: {kind}"},
                                     status=404)
        try:
            items = await self._require_active().browse(kind)
        except asyncio.CancelledError:
            return web.json_response({"status": "cancelled"}, status=409)
        except TapedeckError as e:
            return web.json_response(error_result(e), status=502)
        return web.json_response({"source": self.active_id, "kind": kind,
                                  "items": [item.to_dict() for item in items]})

    async def _handle_search(self, request):
        query = request.query.get('q', '')
        try:
            results = await self._require_active().search(query)
        except asyncio.CancelledError:
            return web.json_response({"status": "cancelled"}, status=409)
        except TapedeckError as e:
            return web.json_response(error_result(e), status=502)
        return web.json_response({"source": self.active_id, "query": query,
                                  **results.to_dict()})

    async def _handle_queue(self, request):
        try:
            data = await request.json()
        except ValueError:
            return web.json_response({"status": "error", "message": "Invalid JSON"}, status=400)
        kind = data.get("kind")
        if kind not in CONTAINER_KINDS or not data.get("id"):
            return web.json_response({"status": "error", "message": "kind and id required"},
                                     status=400)
        try:
            service = self._require_active()
        except TapedeckError as e:
            return web.json_response(error_result(e), status=409)
        result = await service.load_container(data["id"], int(data.get("start", 0)), kind=kind)
        status = 400 if result.get("status") == "error" else 200
        return web.json_response(result, status=status)
