"""QuickServ — real-time notification delivery for the services marketplace.

The server side pushes booking, order and chat notifications to every open
browser tab of a user over an authenticated WebSocket; the client side keeps
that socket alive and reconciles unread counts against the REST API.
"""

__version__ = "0.1.0"
