# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Iterable, Sequence, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

# Local Imports
from microtrans import constants
from microtrans.exceptions import ConfigurationError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def significance_tier(
    p_value: float,
    tiers: Sequence[Tuple[float, str]] = constants.SIGNIFICANCE_TIERS,
    default: str = ""
) -> str:
    """Star label of a p-value; each bound is exclusive (p < bound)."""
    if p_value is None or pd.isna(p_value):
        return default
    for bound, label in tiers:
        if p_value < bound:
            return label
    return default


def resolve_adjust_method(method: str) -> str:
    """Translate an R `p.adjust` name into a statsmodels `multipletests` method."""
    if method is None:
        return 'none'
    key = str(method).strip()
    if key.lower() == 'none':
        return 'none'
    if key.lower() in constants.P_ADJUST_METHODS:
        return constants.P_ADJUST_METHODS[key.lower()]
    known = {
        'bonferroni', 'sidak', 'holm-sidak', 'holm', 'simes-hochberg', 'hommel',
        'fdr_bh', 'fdr_by', 'fdr_tsbh', 'fdr_tsbky'
    }
    if key in known:
        return key
    raise ConfigurationError(f"Unknown p-value adjustment method: '{method}'")


def p_adjust(
    p_values: Union[Iterable[float], pd.Series],
    method: str = constants.DEFAULT_P_ADJUST_METHOD
) -> np.ndarray:
    """Adjust a family of p-values; missing values are left out of the family
    and stay missing."""
    p = np.asarray(list(p_values), dtype=float)
    adjusted = np.full(p.shape, np.nan)
    mask = ~np.isnan(p)
    sm_method = resolve_adjust_method(method)
    if not mask.any():
        return adjusted
    if sm_method == 'none':
        adjusted[mask] = p[mask]
        return adjusted
    _, p_adj, _, _ = multipletests(p[mask], method=sm_method)
    adjusted[mask] = p_adj
    return adjusted


def adjust_within_partitions(
    frame: pd.DataFrame,
    partition_column: str,
    p_column: str = 'raw_p_value',
    method: str = constants.DEFAULT_P_ADJUST_METHOD
) -> pd.Series:
    """Adjust `p_column` separately within each value of `partition_column`.

    Rows keep their original order; the returned series is aligned on the
    frame's index.
    """
    resolve_adjust_method(method)
    adjusted = pd.Series(np.nan, index=frame.index, dtype=float)
    for label, rows in frame.groupby(partition_column, sort=False, dropna=False):
        adjusted.loc[rows.index] = p_adjust(rows[p_column], method)
        logger.debug(
            f"Adjusted {len(rows)} p-values within {partition_column} = '{label}'"
        )
    return adjusted


def pair_compare_label(p_value: float) -> str:
    """Significance symbol used for paired comparisons on alpha plots."""
    return significance_tier(
        p_value,
        tiers=constants.PAIR_COMPARE_TIERS,
        default=constants.PAIR_COMPARE_NS
    )
