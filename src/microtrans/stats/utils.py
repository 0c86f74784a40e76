# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import copy
import logging
import re
from typing import Any, Iterable, List, Optional, Sequence

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import squareform
from skbio.stats.distance import DistanceMatrix
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer

# Local Imports
from microtrans import constants
from microtrans.exceptions import ConfigurationError, DataShapeError, NoOverlapError
from microtrans.models import MeasurementRecord

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

TAXA_PREFIX_PATTERN = re.compile(r".*__")

# ================================= SAMPLE ALIGNMENT ================================= #

def shared_samples(reference: Iterable[Any], other: Iterable[Any]) -> List[Any]:
    """Samples present in both collections, in the order of `reference`."""
    other = set(other)
    shared = [s for s in reference if s in other]
    if not shared:
        raise NoOverlapError(
            "No shared sample identifiers\n"
            f"First identifiers: {list(reference)[:5]} vs {sorted(map(str, other))[:5]}\n"
            "Check for ID format differences between the tables"
        )
    return shared


def orient_samples_as_rows(table: pd.DataFrame, samples: Sequence[Any]) -> pd.DataFrame:
    """Return `table` with samples as rows, transposing it when the sample
    identifiers are found in its columns instead of its index."""
    wanted = set(samples)
    in_rows = sum(s in wanted for s in table.index)
    in_cols = sum(s in wanted for s in table.columns)
    if in_rows == 0 and in_cols == 0:
        raise NoOverlapError(
            "No matching sample IDs found in either table orientation\n"
            f"Table index: {list(table.index[:5])}\n"
            f"Table columns: {list(table.columns[:5])}\n"
            f"Samples: {list(samples)[:5]}"
        )
    if in_cols > in_rows:
        logger.debug(f"Using features-as-rows orientation ({in_cols} matches)")
        return table.T
    return table


def restrict_dataset(dataset: Any, samples: Sequence[Any]) -> Any:
    """Shallow copy of a dataset whose tables only keep `samples`.

    Sample tables and alpha diversity are subset by row, abundance tables by
    column and distance matrices on both axes. Attributes the dataset does not
    have are skipped.
    """
    samples = list(samples)
    restricted = copy.copy(dataset)
    for name in ('sample_table', 'alpha_diversity'):
        frame = getattr(dataset, name, None)
        if frame is not None:
            setattr(restricted, name, frame.loc[[s for s in samples if s in frame.index]])
    otu_table = getattr(dataset, 'otu_table', None)
    if otu_table is not None:
        kept = otu_table.loc[:, [s for s in samples if s in otu_table.columns]]
        setattr(restricted, 'otu_table', kept.loc[kept.sum(axis=1) > 0])
    taxa_abund = getattr(dataset, 'taxa_abund', None)
    if taxa_abund:
        setattr(restricted, 'taxa_abund', {
            level: table.loc[:, [s for s in samples if s in table.columns]]
            for level, table in taxa_abund.items()
        })
    beta_diversity = getattr(dataset, 'beta_diversity', None)
    if beta_diversity:
        setattr(restricted, 'beta_diversity', {
            measure: matrix.loc[
                [s for s in samples if s in matrix.index],
                [s for s in samples if s in matrix.columns]
            ]
            for measure, matrix in beta_diversity.items()
        })
    return restricted

# ==================================== RESHAPING ===================================== #

def wide_to_long(
    wide: pd.DataFrame,
    sample_table: Optional[pd.DataFrame] = None
) -> pd.DataFrame:
    """Melt a samples × measures table into Sample / Measure / Value rows.

    Every attribute of `sample_table` is left-joined on the sample identifier.
    """
    long = (
        wide.rename_axis(constants.SAMPLE_COLUMN)
        .reset_index()
        .melt(
            id_vars=constants.SAMPLE_COLUMN,
            var_name=constants.MEASURE_COLUMN,
            value_name=constants.VALUE_COLUMN
        )
    )
    if sample_table is not None:
        attributes = sample_table.drop(
            columns=[c for c in sample_table.columns if c in long.columns]
        )
        long = long.merge(
            attributes, how='left', left_on=constants.SAMPLE_COLUMN, right_index=True
        )
    return long


def measurement_records(
    long: pd.DataFrame,
    group: Optional[str] = None
) -> List[MeasurementRecord]:
    """Typed records of a long-format measurement table."""
    fixed = {constants.SAMPLE_COLUMN, constants.MEASURE_COLUMN, constants.VALUE_COLUMN}
    extra = [c for c in long.columns if c not in fixed]
    records = []
    for row in long.itertuples(index=False):
        values = dict(zip(long.columns, row))
        records.append(MeasurementRecord(
            sample_id=values[constants.SAMPLE_COLUMN],
            measure_name=values[constants.MEASURE_COLUMN],
            value=float(values[constants.VALUE_COLUMN]),
            group_label=values[group] if group else None,
            other_sample_attributes={c: values[c] for c in extra if c != group},
        ))
    return records


def character_to_numeric(frame: pd.DataFrame) -> pd.DataFrame:
    """Numeric-looking text becomes numbers; other text and categorical
    columns become 1-based category codes (missing stays missing)."""
    converted = frame.copy()
    for column in converted.columns:
        series = converted[column]
        if pd.api.types.is_bool_dtype(series):
            converted[column] = series.astype(float)
            continue
        if pd.api.types.is_numeric_dtype(series):
            continue
        numeric = pd.to_numeric(series, errors='coerce')
        if numeric.notna().sum() == series.notna().sum():
            converted[column] = numeric
            continue
        categorical = series if isinstance(series.dtype, pd.CategoricalDtype) \
            else series.astype('category')
        codes = categorical.cat.codes.astype(float) + 1
        converted[column] = codes.where(codes > 0)
        logger.debug(f"Encoded '{column}' as {len(categorical.cat.categories)} category codes")
    return converted


def complete_missing(
    frame: pd.DataFrame,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE
) -> pd.DataFrame:
    """Fill missing values with a chained-equations imputer.

    Empty strings count as missing. Text columns are imputed on their category
    codes and mapped back to the nearest category.
    """
    frame = frame.replace("", np.nan)
    numeric = frame.copy()
    categories = {}
    for column in frame.columns:
        series = frame[column]
        if pd.api.types.is_numeric_dtype(series):
            continue
        as_number = pd.to_numeric(series, errors='coerce')
        if as_number.notna().sum() == series.notna().sum():
            numeric[column] = as_number
            continue
        categorical = series.astype('category')
        categories[column] = categorical.cat.categories
        numeric[column] = categorical.cat.codes.astype(float).where(categorical.notna())

    if not numeric.isna().any().any():
        return frame
    n_missing = int(numeric.isna().sum().sum())
    imputer = IterativeImputer(random_state=random_state, sample_posterior=False)
    filled = pd.DataFrame(
        imputer.fit_transform(numeric.to_numpy(dtype=float)),
        index=frame.index, columns=frame.columns
    )
    completed = frame.copy()
    for column in frame.columns:
        if column in categories:
            levels = categories[column]
            codes = filled[column].round().clip(0, len(levels) - 1).astype(int)
            completed[column] = frame[column].where(
                frame[column].notna(), levels[codes.to_numpy()].to_series(index=frame.index)
            )
        else:
            completed[column] = filled[column]
    logger.debug(f"Imputed {n_missing} missing environmental values")
    return completed

# ===================================== TAXONOMY ===================================== #

def merge_taxa(
    otu_table: pd.DataFrame,
    tax_table: pd.DataFrame,
    level: str
) -> pd.DataFrame:
    """Sum a features × samples table within each taxon of `level`."""
    if level not in tax_table.columns:
        raise ConfigurationError(
            f"Taxonomic level '{level}' not found; expected one of {list(tax_table.columns)}"
        )
    taxa = tax_table.reindex(otu_table.index)[level].fillna(f"{level[:1].lower()}__")
    return otu_table.groupby(taxa, sort=False).sum()


def strip_taxa_prefix(names: Iterable[str]) -> List[str]:
    """Drop lineage and rank prefixes, e.g. 'k__A|g__B' -> 'B'."""
    return [TAXA_PREFIX_PATTERN.sub("", str(name)) for name in names]


def drop_unresolved(
    table: pd.DataFrame,
    pattern: re.Pattern = constants.UNRESOLVED_TAXA_PATTERN
) -> pd.DataFrame:
    """Remove rows whose name matches `pattern` (unassigned or uncultured taxa)."""
    keep = [not pattern.search(str(name)) for name in table.index]
    return table.loc[keep]

# ===================================== DISTANCES ==================================== #

def condense(matrix: Any) -> np.ndarray:
    """Condensed (pairwise) vector of a square distance matrix."""
    array = np.asarray(matrix, dtype=float)
    if array.ndim != 2 or array.shape[0] != array.shape[1]:
        raise DataShapeError(f"Expected a square matrix, got shape {array.shape}")
    return squareform(array, checks=False)


def to_distance_matrix(
    matrix: Any,
    ids: Optional[Sequence[Any]] = None,
    name: str = "distance"
) -> DistanceMatrix:
    """scikit-bio DistanceMatrix of a square, nearly symmetric array.

    The matrix is made exactly symmetric and its diagonal is set to zero.
    Identifiers are converted to strings.
    """
    if ids is None and isinstance(matrix, pd.DataFrame):
        ids = matrix.index
    data = np.array(matrix, dtype=float)
    if data.ndim != 2 or data.shape[0] != data.shape[1]:
        raise DataShapeError(f"{name} must be a square distance matrix, got {data.shape}")
    if np.isnan(data).any():
        raise DataShapeError(f"{name} matrix contains missing values")
    if not np.allclose(data, data.T, atol=1e-8):
        raise DataShapeError(f"{name} matrix is not symmetric")
    data = (data + data.T) / 2
    np.fill_diagonal(data, 0.0)
    if ids is None:
        ids = range(data.shape[0])
    return DistanceMatrix(data, ids=[str(i) for i in ids])
