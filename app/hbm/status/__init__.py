"""
Status engine for orders and inquiries.

- types: enums, snapshots, transition graphs
- order_status / inquiry_status: derivation and transition rules (pure)
- history: append-only ledger with in-memory and SQL stores
- analytics: badges, statistics and actionable-item read models
- validation: advisory checks returning errors and warnings
"""
