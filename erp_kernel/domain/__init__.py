"""
Kernel domain layer -- pure value objects, zero I/O.

Submodules:
    clock      -- injectable time source
    values     -- Decimal coercion and rounding policy
    documents  -- financial document types, line items, payments, events
    workflow   -- state machine value objects
"""
