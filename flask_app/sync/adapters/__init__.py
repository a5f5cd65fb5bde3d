"""External system adapters used by the transaction sync."""
