"""Shared plumbing: config, credentials, decoding, matching, media engine."""
