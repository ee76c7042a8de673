"""Omnichannel inbox services."""
