"""
Base class for immutable count-matrix transformations.

Workflow steps that reshape a CountMatrix (pre-filtering, sample subsetting)
are written as Transforms: they take a matrix, return a new one, and keep
their parameters for the run log.

Examples:
    >>> from rnadiff.core.transform import Transform
    >>>
    >>> class DropSamples(Transform):
    ...     def __init__(self, samples: list[str]):
    ...         super().__init__(name="DropSamples", params={"samples": samples})
    ...         self.samples = samples
    ...
    ...     def apply(self, matrix):
    ...         return matrix.select_samples(~matrix.sample_ids.isin(self.samples))
    >>>
    >>> trimmed = DropSamples(["SRR1039516"]).apply(matrix)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from rnadiff.core.countmatrix import CountMatrix

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for matrix transformations.

    Subclasses implement ``apply`` and must never modify the input matrix.

    Attributes:
        name: Human-readable transformation name (e.g., "LowCountFilter")
        params: Parameters used, JSON-serializable for the run log
        timestamp: When this transform instance was created
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, matrix: CountMatrix) -> CountMatrix:
        """
        Execute the transformation and return a new matrix.

        Args:
            matrix: Input CountMatrix (left unchanged)

        Returns:
            New CountMatrix with the transformation applied

        Raises:
            ValueError: If the transformation cannot be applied
        """

    def validate(self, matrix: CountMatrix) -> list[str]:
        """
        Check preconditions before applying the transformation.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []
        if matrix.counts.size == 0:
            errors.append("Cannot process empty matrix")
        return errors

    def __call__(self, matrix: CountMatrix) -> CountMatrix:
        errors = self.validate(matrix)
        if errors:
            raise ValueError(f"{self.name} cannot be applied: " + "; ".join(errors))
        return self.apply(matrix)

    def get_params(self) -> dict[str, Any]:
        """Parameters plus name and timestamp, for summaries."""
        return {
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
            **self.params,
        }

    def __repr__(self) -> str:
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
