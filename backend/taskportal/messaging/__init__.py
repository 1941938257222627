"""Direct messaging: presence, message ledger, unread counts and read receipts.

Modules:
    - registry: user id -> live WebSocket connections
    - ledger: DuckDB message store
    - aggregator: unread-count snapshots pushed to live connections
    - service: send / mark-read orchestration shared by REST and WebSocket
    - session: per-connection protocol state machine
    - router: WebSocket endpoint and REST facade
"""
