"""Chatline — real-time direct messaging service.

One-to-one chat over long-lived WebSocket connections: live delivery,
edit/delete propagation, read receipts, typing indicators, and
multi-device presence.
"""

__version__ = "0.1.0"
