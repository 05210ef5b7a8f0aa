"""Storage layer for claim records and uploaded files."""

from .object_storage import LocalObjectStorage, ObjectStorage, S3ObjectStorage, StoredObject
from .record_store import ClaimRecordStore, InMemoryRecordStore, SQLiteRecordStore
from .reconciliation import ReconciliationSweep

__all__ = [
    'ObjectStorage',
    'LocalObjectStorage',
    'S3ObjectStorage',
    'StoredObject',
    'ClaimRecordStore',
    'InMemoryRecordStore',
    'SQLiteRecordStore',
    'ReconciliationSweep',
]
