"""
Tapedeck: one playback core in front of several music backends.

Backends (Subsonic, Synology Audio Station, local files) are normalised into
the universal media model; a single queue, playback state machine and audio
session arbiter drive whichever backend is active.
"""

__version__ = "0.4.0"
