"""
Sync package - Supabase record store and the extension API.

Provides FlowStore for flows/activities and StoreError for classified
database failures.
"""

from sync.errors import StoreError, StoreErrorKind, classify_store_error
from sync.supabase_client import FlowStore

__all__ = ["FlowStore", "StoreError", "StoreErrorKind", "classify_store_error"]
