"""Adapters bind the core ports to SQLite, HTTP and the filesystem."""
