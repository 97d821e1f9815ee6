"""Kernel services -- imperative shell infrastructure."""

from erp_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = ["SequenceCounter", "SequenceService"]
