"""
Server-side modules for relaychat.

This package contains server-side functionality including:
- Session registry and per-recipient delivery
- Per-connection relay loop and listener
"""
