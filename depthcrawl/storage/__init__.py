"""
Storage layer for fetched pages.
"""

from .page_store import PageStore, FilePageStore, NullPageStore, StorageError, create_page_store

__all__ = ['PageStore', 'FilePageStore', 'NullPageStore', 'StorageError', 'create_page_store']
