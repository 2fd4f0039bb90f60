"""Tapedeck playback services (one per backend)."""
