"""
Giving Kernel

The transaction engine behind church giving:
- Integer minor-unit ledger with an explicit state machine
- Exactly-once settlement per logical charge
- Gateway sessions with expiry and idempotent callbacks
- Bounded, classified retry with backoff
"""

__version__ = "0.1.0"
