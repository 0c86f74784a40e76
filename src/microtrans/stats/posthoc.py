# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import string
from typing import Any, Dict, List, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import studentized_range
from statsmodels.formula.api import ols
from statsmodels.regression.linear_model import RegressionResultsWrapper
from statsmodels.stats.anova import anova_lm

# Local Imports
from microtrans import constants
from microtrans.exceptions import StatTestFailure

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

LETTERS = string.ascii_lowercase + string.ascii_uppercase

# ==================================== FUNCTIONS ===================================== #

def factor_term(column: str) -> str:
    """Formula term treating a data column as a categorical factor."""
    return f"C(Q('{column}'))"


def fit_anova(
    data: pd.DataFrame,
    response: str,
    design: str
) -> RegressionResultsWrapper:
    """Fit a linear model `response ~ design` for an analysis of variance.

    Args:
        data:     Long-format table holding the response and design columns.
        response: Column with the response values.
        design:   Right-hand side of the model formula, e.g. "C(Q('Group'))"
                  or "block + N*P*K".
    """
    try:
        return ols(f"Q('{response}') ~ {design}", data=data).fit()
    except Exception as e:
        raise StatTestFailure(f"ANOVA fit of '{design}' failed: {e}") from e


def anova_table(model: RegressionResultsWrapper) -> pd.DataFrame:
    """Sequential (type I) sums of squares, as reported by R's `aov`."""
    try:
        return anova_lm(model, typ=1)
    except Exception as e:
        raise StatTestFailure(f"ANOVA table could not be computed: {e}") from e


def _model_frame(model: RegressionResultsWrapper) -> pd.DataFrame:
    data = model.model.data
    frame = data.frame
    if getattr(data, 'row_labels', None) is not None:
        frame = frame.loc[data.row_labels]
    return frame


def duncan_pvalues(
    means: pd.Series,
    n_harmonic: float,
    mse: float,
    df_error: float
) -> np.ndarray:
    """Pairwise Duncan p-values for means sorted in descending order.

    Two means spanning `p` ranks are compared against the studentized range
    with protection level 1 - (1 - alpha)^(p - 1).
    """
    k = len(means)
    values = means.to_numpy(dtype=float)
    se = np.sqrt(mse / n_harmonic)
    pvalues = np.ones((k, k))
    for i in range(k - 1):
        for j in range(i + 1, k):
            span = j - i + 1
            if se == 0:
                pvalues[i, j] = pvalues[j, i] = 0.0 if values[i] != values[j] else 1.0
                continue
            q = abs(values[i] - values[j]) / se
            cdf = studentized_range.cdf(q, span, df_error)
            pvalues[i, j] = pvalues[j, i] = 1 - cdf ** (1 / (span - 1))
    return pvalues


def assign_letters(pvalues: np.ndarray, alpha: float) -> List[str]:
    """Compact letter display for means already sorted in descending order.

    Every maximal run of consecutive means that are pairwise not different
    gets one letter; a mean carries the letters of every run it belongs to.
    """
    k = pvalues.shape[0]
    runs: List[Tuple[int, int]] = []
    for start in range(k):
        end = start
        while end + 1 < k and all(
            pvalues[member, end + 1] > alpha for member in range(start, end + 1)
        ):
            end += 1
        if not any(s <= start and end <= e for s, e in runs):
            runs.append((start, end))

    letters = [""] * k
    for index, (start, end) in enumerate(runs):
        for member in range(start, end + 1):
            letters[member] += LETTERS[index % len(LETTERS)]
    return letters


def duncan_test(
    model: RegressionResultsWrapper,
    factor: str,
    alpha: float = constants.DEFAULT_DUNCAN_ALPHA
) -> Tuple[Dict[Any, str], Dict[Any, float]]:
    """Duncan's multiple range test on a fitted one-way model.

    Args:
        model:  Result of `fit_anova`.
        factor: Data column holding the group labels.
        alpha:  Significance level.

    Returns:
        Letters and means per group label, both ordered by descending mean.
    """
    frame = _model_frame(model)
    response = pd.Series(np.asarray(model.model.endog, dtype=float), index=frame.index)
    grouped = response.groupby(frame[factor], sort=False)
    means = grouped.mean().sort_values(ascending=False, kind='mergesort')
    counts = grouped.count()

    df_error = float(model.df_resid)
    if df_error <= 0:
        raise StatTestFailure(
            f"Duncan test needs residual degrees of freedom, got {df_error}"
        )
    if counts.nunique() == 1:
        n_harmonic = float(counts.iloc[0])
    else:
        n_harmonic = 1 / np.mean(1 / counts.to_numpy(dtype=float))

    pvalues = duncan_pvalues(means, n_harmonic, float(model.mse_resid), df_error)
    letters = assign_letters(pvalues, alpha)
    logger.debug(
        f"Duncan test on '{factor}': {len(means)} groups, df={df_error:.0f}, "
        f"harmonic n={n_harmonic:.2f}"
    )
    return dict(zip(means.index, letters)), means.to_dict()
