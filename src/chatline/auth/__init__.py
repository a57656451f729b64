"""Authentication.

Learn: Users log in elsewhere and arrive carrying a JWT access token.
Two consumers resolve it to a user id:
1. WebSocket connections → IdentityResolver (once at connect, then
   re-validated per operation via the SessionContext)
2. REST routes → get_current_user dependency

Credential storage and token issuance live outside this service.
"""
