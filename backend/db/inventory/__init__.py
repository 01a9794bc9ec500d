"""
Inventory ledger.

Models:
- Holding (current quantity per item per owner; a row exists only while quantity > 0)
- Transfer (append-only record of a movement between two owners)
"""
