# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Callable, Optional, Sequence, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from scipy.stats import kendalltau, rankdata
from skbio.stats.distance import mantel
from sklearn.preprocessing import StandardScaler

# Local Imports
from microtrans import constants
from microtrans.exceptions import ConfigurationError, DataShapeError, StatTestFailure
from microtrans.stats.utils import to_distance_matrix

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# Correlation methods and their scikit-bio names
MANTEL_METHODS = {'pearson': 'pearson', 'spearman': 'spearman', 'kendall': 'kendalltau'}

# ==================================== FUNCTIONS ===================================== #

def env_distance(env: pd.DataFrame) -> np.ndarray:
    """Euclidean distances between samples after scaling and centring each column."""
    scaled = StandardScaler().fit_transform(env.to_numpy(dtype=float))
    return squareform(pdist(scaled, metric='euclidean'))


def _check_square(matrix: np.ndarray, name: str) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DataShapeError(f"{name} must be a square distance matrix, got {matrix.shape}")
    return matrix


def _check_method(method: str) -> None:
    if method not in MANTEL_METHODS:
        raise ConfigurationError(
            f"Unknown Mantel method '{method}'; expected one of {list(MANTEL_METHODS)}"
        )


def _is_constant(matrix: np.ndarray) -> bool:
    return bool(np.ptp(squareform(matrix, checks=False)) == 0)


def _correlate(a: np.ndarray, b: np.ndarray, method: str) -> float:
    if method == 'pearson':
        return float(np.corrcoef(a, b)[0, 1])
    if method == 'spearman':
        return float(np.corrcoef(rankdata(a), rankdata(b))[0, 1])
    return float(kendalltau(a, b)[0])


def _permutation_pvalue(
    x: np.ndarray,
    statistic: Callable[[np.ndarray], float],
    observed: float,
    permutations: int,
    random_state: Optional[int]
) -> float:
    """One-sided p-value; rows and columns of `x` are permuted together."""
    if permutations == 0:
        return np.nan
    n = x.shape[0]
    rng = np.random.default_rng(random_state)
    exceed = 0
    for _ in range(permutations):
        order = rng.permutation(n)
        if statistic(x[np.ix_(order, order)]) >= observed:
            exceed += 1
    return (exceed + 1) / (permutations + 1)


def mantel_test(
    x: np.ndarray,
    y: np.ndarray,
    method: str = constants.DEFAULT_COR_METHOD,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE
) -> Tuple[float, float, int]:
    """Mantel test between two distance matrices sharing the same sample order.

    The statistic is the correlation of the condensed distances. The p-value
    is one-sided (correlation greater than under permutation). A matrix with
    constant distances gives a missing statistic and p-value.

    Returns:
        (statistic, p_value, number of samples)
    """
    _check_method(method)
    x = _check_square(x, 'x')
    y = _check_square(y, 'y')
    if x.shape != y.shape:
        raise DataShapeError(f"Distance matrices differ in shape: {x.shape} vs {y.shape}")
    n = x.shape[0]
    if n < 3:
        raise StatTestFailure(f"Mantel test needs at least 3 samples, got {n}")
    if _is_constant(x) or _is_constant(y):
        logger.debug("Constant distances; Mantel statistic set to NaN")
        return np.nan, np.nan, n

    stat, p_val, n = mantel(
        to_distance_matrix(x, name='x'),
        to_distance_matrix(y, name='y'),
        method=MANTEL_METHODS[method],
        permutations=permutations,
        alternative='greater',
        seed=random_state,
    )
    return float(stat), float(p_val), int(n)


def partial_mantel_test(
    x: np.ndarray,
    y: np.ndarray,
    z: np.ndarray,
    method: str = constants.DEFAULT_COR_METHOD,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE
) -> Tuple[float, float, int]:
    """Partial Mantel test of x and y controlling for z.

    The statistic is the partial correlation of the condensed distances;
    rows and columns of x are permuted jointly to build the null distribution.
    An undefined partial correlation gives a missing statistic and p-value.

    Returns:
        (statistic, p_value, number of samples)
    """
    _check_method(method)
    x = _check_square(x, 'x')
    y = _check_square(y, 'y')
    z = _check_square(z, 'z')
    if not x.shape == y.shape == z.shape:
        raise DataShapeError(
            f"Distance matrices differ in shape: {x.shape}, {y.shape}, {z.shape}"
        )
    n = x.shape[0]
    if n < 3:
        raise StatTestFailure(f"Partial Mantel test needs at least 3 samples, got {n}")
    if _is_constant(x) or _is_constant(y) or _is_constant(z):
        logger.debug("Constant distances; partial Mantel statistic set to NaN")
        return np.nan, np.nan, n

    yv = squareform(y, checks=False)
    zv = squareform(z, checks=False)
    ryz = _correlate(yv, zv, method)

    def _partial(xm: np.ndarray) -> float:
        xv = squareform(xm, checks=False)
        rxy = _correlate(xv, yv, method)
        rxz = _correlate(xv, zv, method)
        return (rxy - rxz * ryz) / np.sqrt((1 - rxz ** 2) * (1 - ryz ** 2))

    with np.errstate(divide='ignore', invalid='ignore'):
        stat = _partial(x)
        if not np.isfinite(stat):
            logger.debug("Collinear distances; partial Mantel statistic set to NaN")
            return np.nan, np.nan, n
        p_val = _permutation_pvalue(x, _partial, stat, permutations, random_state)
    return float(stat), float(p_val), n


def as_square(
    matrix: pd.DataFrame,
    samples: Sequence[str]
) -> np.ndarray:
    """Square distance array restricted to and ordered by `samples`."""
    missing = [s for s in samples if s not in matrix.index or s not in matrix.columns]
    if missing:
        raise DataShapeError(
            f"{len(missing)} samples missing from the distance matrix, e.g. {missing[:5]}"
        )
    return matrix.loc[list(samples), list(samples)].to_numpy(dtype=float)
