"""Migration engine: discovery, ordering, scheduling and per-unit migration."""
