"""Storage adapters."""

from physio_records.adapters.storage.supabase_adapter import SupabaseRecordStore

__all__ = ["SupabaseRecordStore"]
