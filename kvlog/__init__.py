"""Time-versioned key/value store with content-addressed values."""
