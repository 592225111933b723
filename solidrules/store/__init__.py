"""Durable storage for SolidRules."""

from .backend import JsonFileBackend, KeyValueBackend, MemoryBackend
from .record_store import RecordStore

__all__ = ["JsonFileBackend", "KeyValueBackend", "MemoryBackend", "RecordStore"]
