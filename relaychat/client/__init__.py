"""
Client-side modules for relaychat: handshake, login and the send/receive loops.
"""
