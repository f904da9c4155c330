"""Adapters binding the core ports to SQLite, aiohttp and JSON documents."""
