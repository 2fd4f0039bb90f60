"""
Tapedeck Subsonic source.

Plays from a Subsonic / OpenSubsonic server.  IDs are stable, so album,
artist and playlist songs come straight from the server; every song that
starts playing is scrobbled.
"""

import logging

from tapedeck.lib.source_base import SourceBase

log = logging.getLogger('tapedeck-subsonic')


class SubsonicService(SourceBase):
    """Subsonic source — browse the server library and stream from it."""

    id = "subsonic"
    name = "Subsonic"

    async def on_track_started(self, song):
        await self._with_reauth(self.adapter.report_playback, song)

    async def on_stop(self):
        await self.adapter.logout()
