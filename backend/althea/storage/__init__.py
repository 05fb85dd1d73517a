"""Storage module - blob store and record store interfaces with local implementations."""

from .interface import BlobStore
from .local_storage import LocalBlobStore
from .record_store import RecordStore, JSONRecordStore

__all__ = ['BlobStore', 'LocalBlobStore', 'RecordStore', 'JSONRecordStore']
