"""Filesystem watchers."""
