"""Auto-quote decision pipeline: extraction normalizing, routing, assembly, sweep."""
