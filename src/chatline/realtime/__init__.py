"""Real-time infrastructure — connections, registry, fan-out, WebSocket.

Learn: Events flow in one direction through three pieces:
1. ConnectionRegistry — user_id → that user's open connections
2. Dispatcher — "deliver event E to user U" → E on each of U's connections
3. WebSocketConnection — per-socket outbound queue + writer task

The registry lives in-process, so presence is per server instance.
"""
