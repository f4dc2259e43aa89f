"""
Diagnostics collected while producing clustering outputs.

A Diagnostics value travels with each result instead of living in
module-level state, so concurrent runs never see each other's messages.
"""

from typing import Any, Dict, List


class Diagnostics:
    """
    Warnings and per-output errors for a single analysis run.
    """

    def __init__(self):
        self.warnings: List[str] = []
        self.errors: Dict[str, str] = {}
        self.completed: List[str] = []

    def warn(self, message: str) -> None:
        """
        Record a non-fatal warning.

        Args:
            message: Warning text
        """
        if message not in self.warnings:
            self.warnings.append(message)

    def error(self, output: str, message: str) -> None:
        """
        Record that an output failed.

        Args:
            output: Name of the output that failed (e.g. 'dendrogram')
            message: Failure cause
        """
        self.errors[output] = message

    def complete(self, output: str) -> None:
        """Mark an output as successfully produced."""
        if output not in self.completed:
            self.completed.append(output)

    def merge(self, other: 'Diagnostics') -> 'Diagnostics':
        """
        Fold another Diagnostics into this one.

        Args:
            other: Diagnostics to absorb

        Returns:
            self, for chaining
        """
        for message in other.warnings:
            self.warn(message)
        self.errors.update(other.errors)
        for output in other.completed:
            self.complete(output)
        return self

    @property
    def ok(self) -> bool:
        """True when no output failed."""
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'warnings': list(self.warnings),
            'errors': dict(self.errors),
            'completed': list(self.completed)
        }

    def __repr__(self) -> str:
        return f"Diagnostics(warnings={len(self.warnings)}, errors={list(self.errors)})"
