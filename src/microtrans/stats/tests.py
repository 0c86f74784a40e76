# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from typing import Any, Dict, List, Sequence, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.stats import (
    f_oneway, kendalltau, kruskal, mannwhitneyu, pearsonr, spearmanr, ttest_ind
)

# Local Imports
from microtrans import constants
from microtrans.exceptions import ConfigurationError, StatTestFailure

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ================================= DEFAULT VALUES =================================== #

CORRELATION_TESTS = {
    'pearson': pearsonr,
    'spearman': spearmanr,
    'kendall': kendalltau,
}
# Minimum number of complete pairs for each correlation method
MIN_CORRELATION_PAIRS = {'pearson': 3, 'spearman': 2, 'kendall': 2}

PAIR_COMPARE_METHODS = ('wilcox.test', 't.test', 'kruskal.test', 'anova')

# ==================================== FUNCTIONS ===================================== #

def split_by_group(
    values: Sequence[float],
    group_labels: Sequence[Any]
) -> Dict[Any, np.ndarray]:
    """Values per group label, in order of first appearance."""
    frame = pd.DataFrame({'value': np.asarray(values, dtype=float), 'group': list(group_labels)})
    return {
        label: rows['value'].dropna().to_numpy()
        for label, rows in frame.groupby('group', sort=False)
    }


def kruskal_test(
    values: Sequence[float],
    group_labels: Sequence[Any]
) -> Tuple[float, float]:
    """Kruskal-Wallis rank-sum test over every group present in `group_labels`.

    Returns:
        (H statistic, p-value)

    Raises:
        StatTestFailure: fewer than two non-empty groups, or scipy rejects the
        data (e.g. all values identical).
    """
    groups = [g for g in split_by_group(values, group_labels).values() if len(g) > 0]
    if len(groups) < 2:
        raise StatTestFailure(
            f"Kruskal-Wallis test needs at least 2 non-empty groups, got {len(groups)}"
        )
    try:
        h_stat, p_val = kruskal(*groups)
    except ValueError as e:
        raise StatTestFailure(f"Kruskal-Wallis test failed: {e}") from e
    if np.isnan(p_val):
        raise StatTestFailure("Kruskal-Wallis test returned no p-value")
    return float(h_stat), float(p_val)


def correlation_test(
    x: Sequence[float],
    y: Sequence[float],
    method: str = constants.DEFAULT_COR_METHOD
) -> Tuple[float, float]:
    """Correlation estimate and p-value on complete pairs.

    Degenerate inputs (too few pairs, constant vectors) give (nan, nan)
    instead of raising, so that one bad pair never aborts a batch.
    """
    method = method.lower()
    if method not in CORRELATION_TESTS:
        raise ConfigurationError(
            f"Unknown correlation method '{method}'; expected one of {constants.COR_METHODS}"
        )
    x = pd.to_numeric(pd.Series(np.asarray(x).ravel()), errors='coerce')
    y = pd.to_numeric(pd.Series(np.asarray(y).ravel()), errors='coerce')
    if len(x) != len(y):
        raise ConfigurationError(
            f"Correlation inputs differ in length: {len(x)} vs {len(y)}"
        )
    complete = x.notna() & y.notna()
    x, y = x[complete].to_numpy(), y[complete].to_numpy()
    if len(x) < MIN_CORRELATION_PAIRS[method]:
        logger.debug(f"Only {len(x)} complete pairs for {method} correlation")
        return np.nan, np.nan
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        logger.debug(f"Constant input for {method} correlation")
        return np.nan, np.nan
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        result = CORRELATION_TESTS[method](x, y)
    estimate, p_val = result[0], result[1]
    return float(estimate), float(p_val)


def compare_groups(
    samples: List[np.ndarray],
    method: str = 'wilcox.test'
) -> Tuple[float, float]:
    """Significance test used for paired comparisons drawn on alpha plots."""
    if method == 'wilcox.test':
        stat, p_val = mannwhitneyu(*samples, alternative='two-sided')
    elif method == 't.test':
        stat, p_val = ttest_ind(*samples, equal_var=False)
    elif method == 'kruskal.test':
        stat, p_val = kruskal(*samples)
    elif method == 'anova':
        stat, p_val = f_oneway(*samples)
    else:
        raise ConfigurationError(
            f"Unknown pair_compare_method '{method}'; expected one of {PAIR_COMPARE_METHODS}"
        )
    return float(stat), float(p_val)


def summary_se(
    data: pd.DataFrame,
    measurevar: str,
    groupvars: List[str]
) -> pd.DataFrame:
    """N, mean, standard deviation and standard error of `measurevar` per group."""
    grouped = data.groupby(groupvars, sort=False, observed=True)[measurevar]
    summary = grouped.agg(
        N='count', Mean='mean', SD='std', Median='median', Min='min', Max='max'
    )
    summary['SE'] = summary['SD'] / np.sqrt(summary['N'])
    summary = summary[['N', 'Mean', 'SD', 'SE', 'Median', 'Min', 'Max']]
    return summary.reset_index()


def linear_fit(x: Sequence[float], y: Sequence[float]) -> Dict[str, float]:
    """Ordinary least squares fit of y on x.

    Returns:
        Dictionary with intercept, slope, r_squared and the F-test p_value.
    """
    X = sm.add_constant(np.asarray(x, dtype=float))
    model = sm.OLS(np.asarray(y, dtype=float), X).fit()
    return {
        'intercept': float(model.params[0]),
        'slope': float(model.params[1]),
        'r_squared': float(model.rsquared),
        'p_value': float(model.f_pvalue),
    }
