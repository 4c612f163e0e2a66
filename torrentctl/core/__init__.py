"""Torrent identities and source parsing (descriptors, magnets, IP filters)."""
