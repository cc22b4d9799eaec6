"""
Statistical design construction and contrast resolution.

A design formula (R/patsy syntax, e.g. ``~ cell + dex`` or
``~ disease_state + disease_state:ind_n + disease_state:treatment``) is
turned into a samples x coefficients model matrix with patsy. Factors use
treatment coding, so every coefficient of a factor is a log2 fold change
against that factor's first (reference) level; ``rnadiff.io.metadata.relevel``
controls which level that is.

Validation happens here, before any model is fitted:
    - every formula variable exists in the sample table
    - design variables have no missing values
    - all-zero columns (unbalanced nested designs) are dropped
    - the matrix has full column rank
    - at least one residual degree of freedom remains

Contrasts come in three forms and all resolve to a numeric vector over the
coefficients:

    ("dex", "trt", "untrt")                      level contrast
    "disease_state[T.ALS]:treatment[T.OHT]"      single coefficient
    {"numerator": [...], "denominator": [...]}   coefficient lists

Examples:
    >>> from rnadiff.stats.design import build_design, ContrastSpec
    >>> design = build_design(meta, "~ cell + dex")
    >>> design.coefficient_names
    ('Intercept', 'cell[T.N061011]', 'cell[T.N080611]', 'cell[T.N61311]', 'dex[T.trt]')
    >>> design.contrast_vector(("dex", "trt", "untrt"))
    array([0., 0., 0., 0., 1.])
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence
import ast
import logging
import re
import warnings

import numpy as np
import pandas as pd
import patsy

__all__ = ['Design', 'ContrastSpec', 'DesignError', 'build_design', 'normalize_formula']

logger = logging.getLogger(__name__)


class DesignError(ValueError):
    """Design formula or contrast cannot be used with the sample table."""


def normalize_formula(formula: str) -> str:
    """Return the formula with exactly one leading ``~``."""
    body = formula.strip()
    if body.startswith("~"):
        body = body[1:].strip()
    if not body:
        raise DesignError("Design formula is empty")
    return f"~ {body}"


def _safe_label(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.+-]+", "_", text).strip("_")


@dataclass(frozen=True)
class ContrastSpec:
    """
    One requested comparison.

    Attributes:
        kind: "levels", "coefficient" or "lists"
        factor, tested, reference: Level contrast parts
        coefficient: Coefficient name
        numerator, denominator: Coefficient lists
        name: Optional label override
    """

    kind: str
    factor: Optional[str] = None
    tested: Optional[str] = None
    reference: Optional[str] = None
    coefficient: Optional[str] = None
    numerator: tuple[str, ...] = ()
    denominator: tuple[str, ...] = ()
    name: Optional[str] = None

    @classmethod
    def levels(cls, factor: str, tested: str, reference: str, name: Optional[str] = None) -> ContrastSpec:
        return cls(kind="levels", factor=factor, tested=str(tested), reference=str(reference), name=name)

    @classmethod
    def coef(cls, coefficient: str, name: Optional[str] = None) -> ContrastSpec:
        return cls(kind="coefficient", coefficient=coefficient, name=name)

    @classmethod
    def lists(cls, numerator: Sequence[str], denominator: Sequence[str] = (), name: Optional[str] = None) -> ContrastSpec:
        return cls(kind="lists", numerator=tuple(numerator), denominator=tuple(denominator), name=name)

    @classmethod
    def parse(cls, value: Any) -> ContrastSpec:
        """
        Accept a ContrastSpec, a 3-item sequence, a coefficient string,
        ``"factor:tested:reference"``, or a dict.

        Raises:
            TypeError: For unsupported value types
            ValueError: For malformed strings/dicts
        """
        if isinstance(value, ContrastSpec):
            return value
        if isinstance(value, str):
            text = value.strip()
            if "[" not in text and text.count(":") == 2:
                return cls.levels(*text.split(":"))
            return cls.coef(text)
        if isinstance(value, Mapping):
            name = value.get("name")
            if "numerator" in value or "denominator" in value:
                return cls.lists(
                    _as_list(value.get("numerator", [])),
                    _as_list(value.get("denominator", [])),
                    name=name,
                )
            if "coefficient" in value:
                return cls.coef(value["coefficient"], name=name)
            if {"factor", "tested", "reference"} <= set(value):
                return cls.levels(value["factor"], value["tested"], value["reference"], name=name)
            raise ValueError(
                f"Cannot parse contrast {dict(value)}: expected numerator/denominator, "
                "coefficient, or factor/tested/reference keys"
            )
        if isinstance(value, (list, tuple)):
            if len(value) != 3:
                raise ValueError(f"Level contrast needs [factor, tested, reference], got {list(value)}")
            return cls.levels(*value)
        raise TypeError(f"Unsupported contrast type {type(value).__name__}: {value!r}")

    @property
    def label(self) -> str:
        """File-name safe label, DESeq2 style (``dex_trt_vs_untrt``)."""
        if self.name:
            return _safe_label(self.name)
        if self.kind == "levels":
            return _safe_label(f"{self.factor}_{self.tested}_vs_{self.reference}")
        if self.kind == "coefficient":
            return _safe_label(self.coefficient.replace("[T.", "_").replace("]", ""))
        num = "+".join(self.numerator) or "0"
        label = num if not self.denominator else f"{num}_vs_{'+'.join(self.denominator)}"
        return _safe_label(label.replace("[T.", "_").replace("]", ""))

    def __str__(self) -> str:
        if self.kind == "levels":
            return f"{self.factor}: {self.tested} vs {self.reference}"
        if self.kind == "coefficient":
            return self.coefficient
        return f"[{', '.join(self.numerator)}] - [{', '.join(self.denominator)}]"


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    return list(value)


@dataclass(frozen=True, eq=False)
class Design:
    """
    Validated model matrix.

    Attributes:
        formula: Normalised formula (``~ ...``)
        matrix: Samples x coefficients (float), indexed by sample id
        factors: Factor -> levels, reference first
        coefficient_names: Column names of ``matrix``
        dropped_columns: All-zero columns removed during validation
    """

    formula: str
    matrix: pd.DataFrame
    factors: dict[str, list[str]]
    coefficient_names: tuple[str, ...]
    dropped_columns: tuple[str, ...] = field(default_factory=tuple)

    @property
    def n_samples(self) -> int:
        return self.matrix.shape[0]

    @property
    def n_coefficients(self) -> int:
        return self.matrix.shape[1]

    @property
    def df_residual(self) -> int:
        return self.n_samples - self.n_coefficients

    def coefficient_for(self, factor: str, level: Any) -> str:
        """
        Name of the main-effect coefficient of ``level`` against the reference.

        Raises:
            DesignError: Unknown factor or level, level is the reference, or
                the factor has no main-effect coefficients in this design
        """
        levels = self._levels(factor)
        level = str(level)
        if level not in levels:
            raise DesignError(f"'{level}' is not a level of '{factor}'. Levels: {levels}")
        if level == levels[0]:
            raise DesignError(
                f"'{level}' is the reference level of '{factor}' and has no coefficient"
            )
        suffix = f"[T.{level}]"
        for name in self.coefficient_names:
            if ":" in name:
                continue
            if name == f"{factor}{suffix}" or (name.startswith(f"C({factor}") and name.endswith(suffix)):
                return name
        raise DesignError(
            f"No main-effect coefficient for {factor}={level} in {self.formula}. "
            f"Coefficients: {list(self.coefficient_names)}"
        )

    def _levels(self, factor: str) -> list[str]:
        if factor not in self.factors:
            raise DesignError(
                f"'{factor}' is not a factor of {self.formula}. Factors: {list(self.factors)}"
            )
        return self.factors[factor]

    def _coefficient_index(self, name: str) -> int:
        try:
            return self.coefficient_names.index(name)
        except ValueError:
            raise DesignError(
                f"Unknown coefficient '{name}'. Available: {list(self.coefficient_names)}"
            ) from None

    def contrast_vector(self, spec: Any) -> np.ndarray:
        """
        Numeric contrast over the coefficients.

        A level contrast between two non-reference levels is the difference
        of their coefficients; against the reference it is one coefficient.

        Raises:
            DesignError: Unknown factor, level or coefficient
        """
        spec = ContrastSpec.parse(spec)
        vector = np.zeros(self.n_coefficients, dtype=float)

        if spec.kind == "levels":
            levels = self._levels(spec.factor)
            for level in (spec.tested, spec.reference):
                if level not in levels:
                    raise DesignError(
                        f"'{level}' is not a level of '{spec.factor}'. Levels: {levels}"
                    )
            if spec.tested == spec.reference:
                raise DesignError(f"Contrast compares '{spec.tested}' with itself")
            if spec.tested != levels[0]:
                vector[self._coefficient_index(self.coefficient_for(spec.factor, spec.tested))] += 1.0
            if spec.reference != levels[0]:
                vector[self._coefficient_index(self.coefficient_for(spec.factor, spec.reference))] -= 1.0
        elif spec.kind == "coefficient":
            vector[self._coefficient_index(spec.coefficient)] = 1.0
        else:
            if not spec.numerator and not spec.denominator:
                raise DesignError("List contrast needs at least one coefficient")
            for name in spec.numerator:
                vector[self._coefficient_index(name)] += 1.0
            for name in spec.denominator:
                vector[self._coefficient_index(name)] -= 1.0

        return vector

    def shrinkage_coefficient(self, spec: Any) -> str:
        """
        Single coefficient equivalent to ``spec``, for effect-size shrinkage.

        Raises:
            DesignError: If the contrast is not one coefficient (e.g. two
                non-reference levels, or a list contrast)
        """
        vector = self.contrast_vector(spec)
        nonzero = np.flatnonzero(vector)
        if len(nonzero) != 1 or vector[nonzero[0]] != 1.0:
            raise DesignError(
                f"Contrast '{ContrastSpec.parse(spec)}' is not a single coefficient; "
                "relevel the factor so the comparison is against its reference"
            )
        return self.coefficient_names[nonzero[0]]


def _code_variables(code: str) -> list[str]:
    """Names a factor expression reads (``C(dex)`` -> dex, ``np.log(depth)`` -> depth)."""
    tree = ast.parse(code.strip(), mode="eval")
    skip = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            skip.add(id(node.func))
        elif isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            skip.add(id(node.value))
    return [
        node.id for node in ast.walk(tree)
        if isinstance(node, ast.Name) and id(node) not in skip
    ]


def _formula_variables(formula: str) -> list[str]:
    desc = patsy.ModelDesc.from_formula(formula)
    names: list[str] = []
    for term in desc.rhs_termlist:
        for factor in term.factors:
            try:
                found = _code_variables(factor.name())
            except SyntaxError as e:
                raise DesignError(f"Cannot parse term '{factor.name()}' of {formula}: {e}") from e
            for name in found:
                if name not in names:
                    names.append(name)
    return names


def build_design(
    metadata: pd.DataFrame,
    formula: str,
    drop_zero_columns: bool = True,
) -> Design:
    """
    Build and validate the model matrix for ``formula``.

    String and boolean variables become Categoricals with sorted levels;
    existing Categoricals keep their level order (unused levels removed).

    Args:
        metadata: Sample table indexed by sample id
        formula: R/patsy formula, leading ``~`` optional
        drop_zero_columns: Remove all-zero columns (unbalanced nesting)

    Raises:
        DesignError: Unknown variable, missing values, rank deficiency, no
            residual degrees of freedom, or a patsy evaluation failure
    """
    formula = normalize_formula(formula)
    try:
        variables = _formula_variables(formula)
    except patsy.PatsyError as e:
        raise DesignError(f"Cannot parse formula {formula}: {e}") from e

    missing = [v for v in variables if v not in metadata.columns]
    if missing:
        raise DesignError(
            f"Formula {formula} uses {missing}, not in sample metadata. "
            f"Available: {list(metadata.columns)}"
        )

    data = metadata[variables].copy()
    na_counts = data.isna().sum()
    if na_counts.any():
        bad = na_counts[na_counts > 0].to_dict()
        raise DesignError(f"Missing values in design variables: {bad}")

    factors: dict[str, list[str]] = {}
    for col in variables:
        values = data[col]
        if isinstance(values.dtype, pd.CategoricalDtype):
            values = values.cat.remove_unused_categories()
            levels = [str(lvl) for lvl in values.cat.categories]
            data[col] = pd.Categorical(values.astype(str), categories=levels)
            factors[col] = levels
        elif values.dtype == bool or not pd.api.types.is_numeric_dtype(values):
            levels = sorted(values.astype(str).unique())
            data[col] = pd.Categorical(values.astype(str), categories=levels)
            factors[col] = levels

    for col, levels in factors.items():
        if len(levels) < 2:
            raise DesignError(f"Factor '{col}' has a single level ({levels[0]}) in these samples")

    try:
        matrix = patsy.dmatrix(formula, data, return_type="dataframe", NA_action="raise")
    except patsy.PatsyError as e:
        raise DesignError(f"Cannot build design for {formula}: {e}") from e
    matrix.index = metadata.index

    dropped: list[str] = []
    if drop_zero_columns:
        zero = (matrix == 0).all(axis=0)
        if zero.any():
            dropped = matrix.columns[zero].tolist()
            warnings.warn(
                f"Dropping {len(dropped)} all-zero design columns: {dropped}",
                UserWarning,
            )
            matrix = matrix.loc[:, ~zero]

    n_samples, n_coef = matrix.shape
    rank = int(np.linalg.matrix_rank(matrix.to_numpy()))
    if rank < n_coef:
        raise DesignError(
            f"Design {formula} is not full rank: rank {rank} < {n_coef} coefficients "
            f"({list(matrix.columns)}). One or more variables are linear combinations "
            "of others; for subjects nested within groups, recode subjects with "
            "nest_within and use group:subject terms"
        )
    if n_samples - n_coef < 1:
        raise DesignError(
            f"Design {formula} has {n_coef} coefficients for {n_samples} samples; "
            "no residual degrees of freedom to estimate dispersion"
        )

    logger.info(f"Design {formula}: {n_samples} samples × {n_coef} coefficients")
    logger.debug(f"Coefficients: {list(matrix.columns)}")

    return Design(
        formula=formula,
        matrix=matrix.astype(float),
        factors=factors,
        coefficient_names=tuple(matrix.columns),
        dropped_columns=tuple(dropped),
    )
