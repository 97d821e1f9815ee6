"""
ERP Kernel - financial document lifecycle core.

Pure domain types, typed errors, structured logging and the database
plumbing shared by the document engines:
- Decimal-only amounts with explicit rounding
- Immutable documents, payments and lifecycle events
- Monotonic, scope-keyed document sequences
"""

__version__ = "0.1.0"
