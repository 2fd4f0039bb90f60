"""
Tapedeck local files source.

Plays music files from the folders listed under ``local.paths``.  The
library is scanned when the source connects; ``rescan()`` picks up files
added since.
"""

import logging

from tapedeck.lib.source_base import SourceBase

log = logging.getLogger('tapedeck-local')


class LocalService(SourceBase):
    """Local files source — scan folders and play files directly."""

    id = "local"
    name = "Local Files"

    async def rescan(self) -> dict:
        await self.library_call(self.adapter.authenticate)
        albums = await self.library_call(self.adapter.list_albums)
        playlists = await self.library_call(self.adapter.list_playlists)
        log.info("Rescan: %d albums, %d playlists", len(albums), len(playlists))
        await self.broadcast('library_changed', {
            'albums': len(albums),
            'playlists': len(playlists),
        })
        return {'status': 'ok', 'albums': len(albums), 'playlists': len(playlists)}
