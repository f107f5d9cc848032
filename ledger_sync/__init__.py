"""
Ledger Sync - Source Package

The synchronization engine of an offline-first personal ledger.
A local replica of receipt-derived transactions is reconciled with a
remote authoritative replica that is only reachable intermittently.

DESIGN PRINCIPLES:
1. A user's confirmation outranks any timestamp
2. Never lose a user edit, never duplicate a record
3. One bad record never aborts a batch
4. Every sync decision is auditable
5. Storage and transport are swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Sync Team"
