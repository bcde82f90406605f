"""
Minibank

A minimal banking backend: user registration, password login with opaque
session tokens, and a single Decimal balance per user that only grows by
deposit.
"""

__version__ = "1.0.0"
