"""Archival and retention of files between edge storage and a distributed data store, with a polling scheduler."""

__version__ = "0.1.0"