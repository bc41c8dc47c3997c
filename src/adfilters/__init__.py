"""adfilters: filter list management for content blockers."""
