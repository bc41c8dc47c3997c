"""Core domain package for adfilters.

Core contains the filter models, sync policy, custom filter import and the
event bus without any SQLite, HTTP or filesystem code, keeping the business
logic portable.
"""
