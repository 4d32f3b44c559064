"""Device integrity verification backend."""
