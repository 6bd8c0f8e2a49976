"""
CRM Kernel

Stock ledger and webhook persistence core of the CRM:
- Per-item stock levels mutated only through the stock ledger
- Append-only movement log (every change explains itself)
- Race-safe concurrent decrement (no oversell)
- Webhook subscriptions and an append-only delivery log
"""

__version__ = "0.1.0"
