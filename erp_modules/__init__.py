"""
Module layer -- wires the pure engines to storage and audit collaborators.

Packages:
    documents -- quotation, customer order, purchase order and invoice lifecycle
"""
