# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Audio session arbiter: which backend owns the single audio output.

Every playback service registers a stop callback.  Before a service starts
or resumes playback it calls ``request(owner)``; every *other* registered
owner is told to stop first, then the caller becomes the owner.  Requests
are never denied.  ``release(owner)`` gives the session up, and does
nothing unless the caller is the current owner.

Both calls are synchronous and never await, so on the event loop they
cannot interleave.  Stop callbacks must not block: playback services post
a command to their own mailbox and return.

This is cooperative.  A service that ignores the stop callback keeps
driving whatever it drives; the arbiter cannot prevent that.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

StopCallback = Callable[[str], None]


class AudioSessionArbiter:
    def __init__(self):
        self._owners: dict[str, StopCallback] = {}
        self._current: str | None = None

    @property
    def owner(self) -> str | None:
        return self._current

    def register(self, owner: str, on_stop: StopCallback) -> None:
        self._owners[owner] = on_stop

    def unregister(self, owner: str) -> None:
        self._owners.pop(owner, None)
        self.release(owner)

    def request(self, owner: str) -> bool:
        """Stop every other owner, then hand the session to *owner*."""
        for other, on_stop in list(self._owners.items()):
            if other == owner:
                continue
            try:
                on_stop(owner)
            except Exception:
                logger.exception("Stop callback for %s failed", other)
        previous = self._current
        self._current = owner
        if previous != owner:
            logger.info("Audio session: %s -> %s", previous, owner)
        return True

    def release(self, owner: str) -> None:
        if self._current != owner:
            return
        self._current = None
        logger.info("Audio session released by %s", owner)
