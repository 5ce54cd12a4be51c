"""Real-time infrastructure — WebSocket handshake, registry, dispatch.

Learn: Notifications flow in one direction:
1. Business code → NotificationDispatcher (persist, then push)
2. Dispatcher → ConnectionRegistry → every live socket of the user
3. Optional: Redis pub/sub carries step 2 across worker processes

The database is the source of truth; the socket is a latency shortcut.
"""
