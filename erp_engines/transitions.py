"""
Transition Engine - Per-document-type status graphs.

One immutable adjacency table per ``DocumentType``, built from the
``Workflow`` definitions passed in.  Pure and stateless after
construction; safe to share between threads.

Usage:
    from erp_engines.transitions import TransitionValidator
    from erp_modules.documents.workflows import DOCUMENT_WORKFLOWS

    validator = TransitionValidator(DOCUMENT_WORKFLOWS)
    validator.can_transition(DocumentType.INVOICE, "draft", "sent")  # True
    validator.assert_transition(DocumentType.INVOICE, "paid", "sent")  # raises
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping

from erp_kernel.domain.documents import DocumentType, status_value
from erp_kernel.domain.workflow import Workflow
from erp_kernel.exceptions import InvalidStatusTransitionError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.transitions")


class TransitionValidator:
    """
    Accepts or rejects a status change for a document type.

    Contract:
        ``can_transition`` answers; ``assert_transition`` raises
        ``InvalidStatusTransitionError`` on anything not an edge.

    Guarantees:
        - Self-transitions, unknown statuses and moves out of terminal
          statuses are always rejected.
        - The graph never consults side data.  Callers that need to pick a
          target (e.g. the payment ledger) do so before asking.
    """

    def __init__(self, workflows: Mapping[DocumentType, Workflow]):
        missing = [t.value for t in DocumentType if t not in workflows]
        if missing:
            raise ValueError(f"No workflow registered for document types: {missing}")

        adjacency: dict[DocumentType, Mapping[str, frozenset[str]]] = {}
        for document_type, workflow in workflows.items():
            document_type = DocumentType(document_type)
            declared = {s.value for s in document_type.status_enum}
            if set(workflow.states) != declared:
                raise ValueError(
                    f"Workflow {workflow.name} states do not match "
                    f"{document_type.value} statuses"
                )
            adjacency[document_type] = MappingProxyType(
                {state: workflow.successors(state) for state in workflow.states}
            )
        self._workflows = MappingProxyType(dict(workflows))
        self._adjacency = MappingProxyType(adjacency)

    def workflow(self, document_type: DocumentType) -> Workflow:
        return self._workflows[DocumentType(document_type)]

    def successors(self, document_type: DocumentType, status: str | Enum) -> frozenset[str]:
        """Statuses reachable in one step; empty for terminal or unknown statuses."""
        graph = self._adjacency[DocumentType(document_type)]
        return graph.get(status_value(status), frozenset())

    def is_terminal(self, document_type: DocumentType, status: str | Enum) -> bool:
        return status_value(status) in self.workflow(document_type).terminal_states

    def can_transition(
        self,
        document_type: DocumentType,
        from_status: str | Enum,
        to_status: str | Enum,
    ) -> bool:
        return status_value(to_status) in self.successors(document_type, from_status)

    def assert_transition(
        self,
        document_type: DocumentType,
        from_status: str | Enum,
        to_status: str | Enum,
    ) -> str:
        """
        Validate one edge.

        Returns:
            The action name of the transition (e.g. ``"send"``).

        Raises:
            InvalidStatusTransitionError: the edge is not in the graph.
        """
        document_type = DocumentType(document_type)
        source, target = status_value(from_status), status_value(to_status)
        if not self.can_transition(document_type, source, target):
            logger.warning(
                "invalid_status_transition",
                extra={
                    "document_type": document_type.value,
                    "from_status": source,
                    "to_status": target,
                },
            )
            raise InvalidStatusTransitionError(document_type.value, source, target)
        return self.workflow(document_type).action_for(source, target)
