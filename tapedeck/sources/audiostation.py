"""
Tapedeck Audio Station source.

Plays from a Synology NAS running Audio Station.  The NAS has no stable IDs
for albums, artists or playlists, so the adapter resolves their songs by
name (see tapedeck.resolution).

Some files (ALAC in .m4a, odd FLAC variants) stream fine but will not
decode; ``retry_transcoded`` replays the current song through the NAS
transcoder instead:

    await service.dispatch("retry_transcoded", {"format": "mp3", "bitrate": 320})
"""

import logging

from tapedeck.errors import PlaybackFailed
from tapedeck.lib.source_base import SourceBase

log = logging.getLogger('tapedeck-audiostation')


class AudioStationService(SourceBase):
    """Audio Station source — browse and stream from a Synology NAS."""

    id = "audiostation"
    name = "Audio Station"

    async def handle_extra_command(self, cmd, data):
        if cmd == 'retry_transcoded':
            return await self._retry_transcoded(data.get('format', 'mp3'),
                                                int(data.get('bitrate', 320)))
        return None

    async def _retry_transcoded(self, fmt, bitrate):
        song = self.queue.current
        if song is None:
            raise PlaybackFailed("Nothing to retry")
        url = self.adapter.transcoded_stream_url(song, fmt, bitrate)
        if not url:
            raise PlaybackFailed(f"No transcoded stream for '{song.title}'")
        log.info("Retrying '%s' transcoded to %s/%d", song.title, fmt, bitrate)
        self.queue.replace_current(song.with_stream(url))
        self._acquire_output()
        await self.machine.load_current()
        return {'format': fmt, 'bitrate': bitrate}

    async def on_stop(self):
        await self.adapter.logout()
