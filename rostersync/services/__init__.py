"""Service layer: shared infrastructure (core) and the roster sync pipeline (sync)."""
