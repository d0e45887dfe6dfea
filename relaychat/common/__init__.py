"""
Shared modules for relaychat.

This package contains functionality used by both server and client:
- Error taxonomy
- Configuration and logging setup
- Length-prefixed framing
- Chat-line protocol helpers
"""
