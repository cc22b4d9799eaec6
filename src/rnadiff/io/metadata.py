"""
Sample-metadata loading and factor manipulation.

The sample table (one row per sequencing run, e.g. a SRA run table) supplies
every variable a design formula can reference. Factor level order matters:
under treatment coding the first level is the reference, so ``relevel`` and
``set_levels`` decide what each log2 fold change is measured against.

Biological Context:
    A typical airway-style table:

        Run         cell     dex    albut  disease_state  treatment
        SRR1039508  N61311   untrt  untrt  healthy        vehicle
        SRR1039509  N61311   trt    untrt  healthy        OHT

    Paired or nested layouts (patients within disease groups) need the
    subject column recoded within each group before the model matrix can be
    full rank, see ``nest_within``.

Engineering Design:
    - Every function returns a new DataFrame, input tables are never mutated
    - Factors are pandas Categoricals, so patsy honours the level order
    - Missing columns raise KeyError, unknown levels raise ValueError

Examples:
    >>> from rnadiff.io.metadata import load_sample_table, relevel
    >>> meta = load_sample_table("SraRunTable.txt", sample_col="Run")
    >>> meta = relevel(meta, "dex", "untrt")
    >>> list(meta["dex"].cat.categories)
    ['untrt', 'trt']
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional
import logging
import warnings
import numpy as np
import pandas as pd

from rnadiff.io.formats import sniff_delimiter

__all__ = [
    'load_sample_table',
    'relevel',
    'set_levels',
    'drop_unused_levels',
    'combine_factors',
    'nest_within',
    'rename_columns',
    'map_values',
    'align_to',
    'subset_samples',
]

logger = logging.getLogger(__name__)


def load_sample_table(
    path: str | Path,
    sample_col: Optional[str] = None,
    sep: Optional[str] = None,
) -> pd.DataFrame:
    """
    Read a delimited sample-metadata table.

    Args:
        path: Table path (TSV, CSV; delimiter sniffed when ``sep`` is None)
        sample_col: Column holding sample ids (default: first column)
        sep: Explicit delimiter

    Returns:
        DataFrame indexed by sample id (string), string cells stripped

    Raises:
        FileNotFoundError: If path does not exist
        KeyError: If sample_col is not a column
        ValueError: If the table is empty or sample ids are duplicated
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sample table not found: {path}")

    if sep is None:
        sep = sniff_delimiter(path)

    try:
        header = pd.read_csv(path, sep=sep, nrows=0).columns
        if sample_col is None:
            id_cols = header[:1]
        else:
            id_cols = [c for c in header if str(c).strip() == sample_col]
        table = pd.read_csv(path, sep=sep, dtype={c: str for c in id_cols})
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Sample table is empty: {path}") from e

    if table.empty:
        raise ValueError(f"Sample table contains no rows: {path}")

    table.columns = [str(c).strip() for c in table.columns]

    if sample_col is None:
        sample_col = table.columns[0]
    elif sample_col not in table.columns:
        raise KeyError(
            f"Sample column '{sample_col}' not in {path.name}. "
            f"Available: {list(table.columns)}"
        )

    for col in table.columns:
        if not pd.api.types.is_numeric_dtype(table[col]):
            table[col] = table[col].map(lambda v: v.strip() if isinstance(v, str) else v)

    ids = table[sample_col].astype(str)
    if ids.duplicated().any():
        dupes = ids[ids.duplicated()].unique().tolist()
        raise ValueError(f"Duplicate sample ids in {path.name}: {dupes[:5]}")

    table = table.set_index(ids.rename(sample_col)).drop(columns=[sample_col])
    logger.info(f"Loaded sample table: {len(table)} samples × {table.shape[1]} columns from {path.name}")
    return table


def _require_column(metadata: pd.DataFrame, column: str) -> None:
    if column not in metadata.columns:
        raise KeyError(
            f"Column '{column}' not in sample metadata. Available: {list(metadata.columns)}"
        )


def _current_levels(values: pd.Series) -> list:
    if isinstance(values.dtype, pd.CategoricalDtype):
        return list(values.cat.categories)
    return sorted(values.dropna().unique(), key=str)


def relevel(metadata: pd.DataFrame, column: str, reference: Any) -> pd.DataFrame:
    """
    Make ``reference`` the first level of ``column``.

    Remaining levels keep their current order (Categorical) or sort
    alphabetically (plain columns), matching R's ``factor``/``relevel``.

    Raises:
        KeyError: If column is missing
        ValueError: If reference is not an observed level
    """
    _require_column(metadata, column)
    levels = _current_levels(metadata[column])
    if reference not in levels:
        raise ValueError(
            f"'{reference}' is not a level of '{column}'. Levels: {levels}"
        )
    ordered = [reference] + [lvl for lvl in levels if lvl != reference]
    return set_levels(metadata, column, ordered)


def set_levels(metadata: pd.DataFrame, column: str, levels: Iterable[Any]) -> pd.DataFrame:
    """
    Give ``column`` an explicit level order.

    Raises:
        KeyError: If column is missing
        ValueError: If an observed value is not in ``levels``
    """
    _require_column(metadata, column)
    levels = list(levels)
    values = metadata[column]
    observed = set(values.dropna().unique())
    unknown = observed - set(levels)
    if unknown:
        raise ValueError(
            f"Values of '{column}' missing from levels {levels}: {sorted(map(str, unknown))}"
        )
    result = metadata.copy()
    result[column] = pd.Categorical(values.astype(object), categories=levels)
    return result


def drop_unused_levels(metadata: pd.DataFrame) -> pd.DataFrame:
    """Remove Categorical levels with no remaining samples (after subsetting)."""
    result = metadata.copy()
    for col in result.columns:
        if isinstance(result[col].dtype, pd.CategoricalDtype):
            result[col] = result[col].cat.remove_unused_categories()
    return result


def combine_factors(
    metadata: pd.DataFrame,
    columns: list[str],
    new_column: str,
    sep: str = "_",
) -> pd.DataFrame:
    """
    Create a group factor from several factors (e.g. disease_state x treatment).

    Levels are ordered by the component factors' level order, first column
    varying slowest, so the reference group is the combination of references.
    """
    for col in columns:
        _require_column(metadata, col)

    combined = metadata[columns[0]].astype(str)
    for col in columns[1:]:
        combined = combined + sep + metadata[col].astype(str)

    level_lists = [[str(lvl) for lvl in _current_levels(metadata[col])] for col in columns]
    full_levels = pd.MultiIndex.from_product(level_lists).map(lambda parts: sep.join(parts))
    present = set(combined)
    levels = [lvl for lvl in full_levels if lvl in present]

    result = metadata.copy()
    result[new_column] = pd.Categorical(combined, categories=levels)
    return result


def nest_within(
    metadata: pd.DataFrame,
    subject_col: str,
    group_col: str,
    new_column: str = "ind_n",
) -> pd.DataFrame:
    """
    Recode subjects as 1..n within each group.

    With individuals nested in groups (each patient in exactly one disease
    group), ``~ group + subject + group:condition`` is not full rank. Using
    the within-group index instead of the subject id removes the linear
    dependency while still identifying every subject.

    Raises:
        KeyError: If either column is missing
        ValueError: If a subject appears in more than one group
    """
    _require_column(metadata, subject_col)
    _require_column(metadata, group_col)

    groups_per_subject = metadata.groupby(subject_col, observed=True)[group_col].nunique()
    crossing = groups_per_subject[groups_per_subject > 1]
    if len(crossing) > 0:
        raise ValueError(
            f"Subjects appear in more than one '{group_col}' group: {crossing.index.tolist()[:5]}"
        )

    codes = pd.Series(0, index=metadata.index, dtype=int)
    for _, members in metadata.groupby(group_col, observed=True, sort=False)[subject_col]:
        codes.loc[members.index] = pd.factorize(members.astype(str), sort=True)[0] + 1

    levels = [str(i) for i in range(1, int(codes.max()) + 1)]
    result = metadata.copy()
    result[new_column] = pd.Categorical(codes.astype(str), categories=levels)

    sizes = codes.groupby(metadata[group_col].astype(str)).max()
    if sizes.nunique() > 1:
        warnings.warn(
            f"Unbalanced nesting: groups of '{group_col}' have {sizes.to_dict()} subjects; "
            "the design will contain all-zero interaction columns",
            UserWarning,
        )
    return result


def rename_columns(metadata: pd.DataFrame, mapping: Mapping[str, str]) -> pd.DataFrame:
    """Rename metadata columns, raising KeyError for unknown source columns."""
    for col in mapping:
        _require_column(metadata, col)
    return metadata.rename(columns=dict(mapping))


def map_values(metadata: pd.DataFrame, column: str, mapping: Mapping[Any, Any]) -> pd.DataFrame:
    """Replace values of ``column``; values absent from ``mapping`` are kept."""
    _require_column(metadata, column)
    result = metadata.copy()
    values = result[column].astype(object)
    result[column] = values.map(lambda v: mapping.get(v, v))
    return result


def align_to(metadata: pd.DataFrame, sample_ids: Iterable[str]) -> pd.DataFrame:
    """
    Reorder metadata rows to ``sample_ids``.

    Raises:
        ValueError: Listing the samples with no metadata row
    """
    sample_ids = pd.Index(sample_ids)
    missing = sample_ids.difference(metadata.index)
    if len(missing) > 0:
        raise ValueError(
            f"{len(missing)} samples have no metadata row: {missing.tolist()[:10]}"
        )
    extra = metadata.index.difference(sample_ids)
    if len(extra) > 0:
        logger.debug(f"Dropping {len(extra)} metadata rows without quantification")
    aligned = metadata.loc[sample_ids].copy()
    aligned.index.name = metadata.index.name
    return aligned


def subset_samples(metadata: pd.DataFrame, **equals: Any) -> np.ndarray:
    """
    Boolean mask of samples matching every ``column=value`` condition.

    A list/tuple/set value matches any of its members. Values also match
    by their text, so ``batch="1"`` (as given on the command line) selects
    samples whose numeric batch is 1.

    Examples:
        >>> mask = subset_samples(meta, treatment="vehicle", disease_state=["healthy"])
    """
    mask = np.ones(len(metadata), dtype=bool)
    for column, value in equals.items():
        _require_column(metadata, column)
        values = metadata[column].astype(object)
        wanted = list(value) if isinstance(value, (list, tuple, set, frozenset)) else [value]
        as_text = values.map(lambda v: None if pd.isna(v) else str(v))
        matches = values.isin(wanted) | as_text.isin([str(v) for v in wanted])
        mask &= matches.to_numpy()
    return mask
