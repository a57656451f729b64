"""Event type constants.

Learn: Centralizing event names as constants prevents typos and
makes it easy to discover every event in the system. Two families:

1. Audit events — appended to the events table by the message store
2. Client events — pushed over WebSocket to connected clients
"""

# ─── Audit trail (events table) ──────────────────────────

MESSAGE_SENT = "message.sent"
MESSAGE_EDITED = "message.edited"
MESSAGE_DELETED = "message.deleted"
MESSAGES_READ = "messages.read"

# ─── Client-facing: chat ─────────────────────────────────

RECEIVED_MESSAGE = "ReceivedMessage"
MESSAGE_ACKNOWLEDGED = "MessageAcknowledged"
MESSAGE_EDITED_EVENT = "MessageEdited"
MESSAGE_DELETED_EVENT = "MessageDeleted"
MESSAGES_READ_EVENT = "MessagesRead"
USER_TYPING = "UserTyping"

# ─── Client-facing: presence + connection ────────────────

CONNECTED = "Connected"
USER_ONLINE = "UserOnline"
USER_OFFLINE = "UserOffline"
PONG = "Pong"

# ─── Client-facing: errors ───────────────────────────────

OPERATION_ERROR = "OperationError"
