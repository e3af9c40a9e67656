"""Build engine core — workspace, phases, cache, resolution, metadata."""
