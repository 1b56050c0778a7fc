"""
Orders module.

Order status is derived from lifecycle timestamps; transitions stamp the
matching timestamp and are recorded to the status ledger.
"""
