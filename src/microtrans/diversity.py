# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Dict, Iterable, List, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from skbio.diversity import alpha
from skbio.diversity import beta_diversity as skbio_beta_diversity

# Local Imports
from microtrans import constants
from microtrans.exceptions import ConfigurationError, DataShapeError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ================================= DEFAULT VALUES =================================== #

METRIC_COLUMNS = {
    'observed': 'Observed',
    'chao1': 'Chao1',
    'ace': 'ACE',
    'shannon': 'Shannon',
    'simpson': 'Simpson',
    'invsimpson': 'InvSimpson',
    'fisher': 'Fisher',
    'coverage': 'Coverage',
}
COUNT_METRICS = {'chao1', 'ace', 'fisher', 'coverage'}
# Abundance at or below which a taxon counts as rare for ACE
ACE_RARE_THRESHOLD = 10

BETA_METRICS = {
    'bray': 'braycurtis',
    'jaccard': 'jaccard',
    'euclidean': 'euclidean',
    'manhattan': 'cityblock',
}

# ================================ RICHNESS ESTIMATORS =============================== #

def chao1(counts: np.ndarray) -> Tuple[float, float]:
    """Bias-corrected Chao1 richness and its standard error."""
    estimate = float(alpha.chao1(counts, bias_corrected=True))
    f1 = int((counts == 1).sum())
    f2 = int((counts == 2).sum())
    if f2 > 0:
        g = f1 / f2
        variance = f2 * (0.5 * g ** 2 + g ** 3 + 0.25 * g ** 4)
    elif estimate > 0:
        variance = (
            f1 * (f1 - 1) / 2 + f1 * (2 * f1 - 1) ** 2 / 4 - f1 ** 4 / (4 * estimate)
        )
    else:
        variance = 0.0
    return estimate, float(np.sqrt(max(variance, 0.0)))


def ace(counts: np.ndarray, rare_threshold: int = ACE_RARE_THRESHOLD) -> float:
    """Abundance-based coverage estimator of richness; NaN when undefined."""
    try:
        return float(alpha.ace(counts, rare_threshold=rare_threshold))
    except ValueError as e:
        logger.debug(f"ACE undefined for this sample: {e}")
        return np.nan


def fisher_alpha(counts: np.ndarray) -> float:
    """Fisher's log-series alpha; NaN when every individual is a distinct taxon."""
    n = counts.sum()
    s = int((counts > 0).sum())
    if s == 0 or s >= n:
        return np.nan
    return float(alpha.fisher_alpha(counts))

# ==================================== FUNCTIONS ===================================== #

def alpha_diversity(
    table: pd.DataFrame,
    metrics: Iterable[str] = constants.DEFAULT_ALPHA_METRICS
) -> pd.DataFrame:
    """
    Calculate alpha diversity metrics for each sample.

    Args:
        table:   Abundance table (samples x features).
        metrics: Metrics to compute; see METRIC_COLUMNS.

    Returns:
        DataFrame with alpha diversity values (samples x metrics). Chao1 is
        followed by its standard error column 'se.chao1'.
    """
    metrics = [m.lower() for m in metrics]
    unknown = [m for m in metrics if m not in METRIC_COLUMNS]
    if unknown:
        raise ConfigurationError(
            f"Unsupported alpha diversity metrics {unknown}; "
            f"expected any of {list(METRIC_COLUMNS)}"
        )
    if table.isna().any().any() or (table < 0).any().any():
        raise DataShapeError("Abundance table must be non-negative without missing values")

    values = table.to_numpy(dtype=float)
    is_integer = np.allclose(values, np.round(values))
    counts = np.round(values).astype(int)
    totals = values.sum(axis=1)
    proportions = np.divide(values, totals[:, None], out=np.zeros_like(values), where=totals[:, None] > 0)

    results: Dict[str, List[float]] = {}
    for metric in metrics:
        column = METRIC_COLUMNS[metric]
        if metric in COUNT_METRICS and not is_integer:
            logger.warning(
                f"Non-integer values detected for {metric}. "
                "Requires integer counts. Returning NaN."
            )
            results[column] = [np.nan] * len(table)
            if metric == 'chao1':
                results['se.chao1'] = [np.nan] * len(table)
            continue

        if metric == 'observed':
            results[column] = (values > 0).sum(axis=1).astype(float).tolist()
        elif metric == 'chao1':
            pairs = [chao1(row) for row in counts]
            results[column] = [p[0] for p in pairs]
            results['se.chao1'] = [p[1] for p in pairs]
        elif metric == 'ace':
            results[column] = [ace(row) for row in counts]
        elif metric == 'shannon':
            results[column] = [
                float(alpha.shannon(row, base=np.e)) if row.sum() > 0 else np.nan
                for row in proportions
            ]
        elif metric == 'simpson':
            results[column] = [
                float(alpha.simpson(row)) if row.sum() > 0 else np.nan for row in proportions
            ]
        elif metric == 'invsimpson':
            results[column] = [
                float(alpha.enspie(row)) if row.sum() > 0 else np.nan for row in proportions
            ]
        elif metric == 'fisher':
            results[column] = [fisher_alpha(row) for row in counts]
        elif metric == 'coverage':
            results[column] = [
                float(alpha.goods_coverage(row)) if row.sum() > 0 else np.nan for row in counts
            ]

    return pd.DataFrame(results, index=table.index)


def beta_diversity(
    table: pd.DataFrame,
    metric: str = 'bray'
) -> pd.DataFrame:
    """Square sample × sample dissimilarity matrix.

    Args:
        table:  Abundance table (samples x features).
        metric: 'bray', 'jaccard' (presence/absence), 'euclidean' or 'manhattan'.
    """
    if metric not in BETA_METRICS:
        raise ConfigurationError(
            f"Unsupported beta diversity metric '{metric}'; expected one of {list(BETA_METRICS)}"
        )
    if len(table) < 2:
        raise DataShapeError("At least 2 samples required")
    data = table.to_numpy(dtype=float)
    if np.isnan(data).any() or (data < 0).any():
        raise DataShapeError("Abundance table must be non-negative without missing values")
    if metric == 'jaccard':
        data = (data > 0).astype(int)
    dm = skbio_beta_diversity(
        BETA_METRICS[metric], data, ids=[str(i) for i in table.index], validate=False
    )
    return pd.DataFrame(dm.data, index=table.index, columns=table.index)
