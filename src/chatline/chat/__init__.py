"""Direct-message chat core.

Learn: Layers, leaves first:
1. session   — per-connection SessionContext + state machine
2. outcome   — ErrorKind taxonomy + Outcome result type
3. protocol  — the operations (send, edit, delete, mark-read, typing, connect/disconnect)
4. isolation — catches faults per operation, maps failures to OperationError
5. router    — parses client frames and calls the protocol through isolation
6. runtime   — builds all of the above once per process
"""
