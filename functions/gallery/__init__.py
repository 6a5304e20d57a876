"""
Backend package for the wallpaper gallery.

This package provides a FastAPI application with per-session overlay
navigation plus storage, database, auth and queue abstractions for the
catalog, favorites and admin features.
"""
