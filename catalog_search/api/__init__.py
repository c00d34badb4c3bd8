"""HTTP adapter over the search and sync engines."""
