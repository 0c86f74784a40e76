# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from typing import Iterator, List, Optional, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from skbio.stats.ordination import pcoa as PCoA
from sklearn.decomposition import PCA
from sklearn.linear_model import LinearRegression

# Local Imports
from microtrans import constants
from microtrans.exceptions import DataShapeError, StatTestFailure
from microtrans.logger import _format_task_desc, get_progress_bar
from microtrans.models import RdaResult
from microtrans.stats.utils import to_distance_matrix

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

AXIS_PREFIX = "RDA"
# Eigenvalues below this share of the largest one are treated as zero
EIGEN_TOLERANCE = 1e-8
ANOVA_COLUMNS = ['Df', 'Variance', 'F', 'Pr(>F)']

# =============================== HELPER FUNCTIONS ==================================== #

def _centre(matrix: np.ndarray) -> np.ndarray:
    return matrix - matrix.mean(axis=0)


def _inertia(matrix: np.ndarray) -> float:
    """Total variance: sum of the column variances."""
    return float(np.var(matrix, axis=0, ddof=1).sum())


def _hat_matrix(X: np.ndarray) -> np.ndarray:
    """Projection onto the column space of the centred explanatory matrix."""
    Xc = _centre(X)
    return Xc @ np.linalg.pinv(Xc)


def _rank(X: np.ndarray) -> int:
    return int(np.linalg.matrix_rank(_centre(X))) if X.shape[1] else 0


def _axis_names(n: int) -> List[str]:
    return [f"{AXIS_PREFIX}{i+1}" for i in range(n)]


def _column_correlations(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    """Pearson correlation of every column of A with every column of B."""
    def _standardise(M):
        sd = M.std(axis=0)
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(sd > 0, (M - M.mean(axis=0)) / sd, np.nan)
    return _standardise(A).T @ _standardise(B) / A.shape[0]


def _iter_permutations(
    n: int,
    permutations: int,
    random_state: Optional[int],
    desc: str = "Permutations",
    verbose: bool = False
) -> Iterator[np.ndarray]:
    rng = np.random.default_rng(random_state)
    if not verbose:
        for _ in range(permutations):
            yield rng.permutation(n)
        return
    with get_progress_bar() as progress:
        task_id = progress.add_task(_format_task_desc(desc), total=permutations)
        for _ in range(permutations):
            yield rng.permutation(n)
            progress.update(task_id, advance=1)


def _prepare(response: pd.DataFrame, env: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
    if not response.index.equals(env.index):
        raise DataShapeError("Response and environmental tables must share the same sample order")
    X = env.to_numpy(dtype=float)
    if np.isnan(X).any():
        missing = env.columns[env.isna().any()].tolist()
        raise DataShapeError(
            f"Environmental variables contain missing values: {missing}; "
            f"use complete_na=True or drop them"
        )
    if env.shape[0] < 3:
        raise DataShapeError(f"Ordination needs at least 3 samples, got {env.shape[0]}")
    return _centre(response.to_numpy(dtype=float)), X

# ==================================== FUNCTIONS ===================================== #

def adjusted_r2(r2: float, n_samples: int, n_terms: int) -> float:
    """Ezekiel's adjustment; undefined when the model is saturated."""
    if n_samples - n_terms - 1 <= 0:
        return np.nan
    return 1 - (1 - r2) * (n_samples - 1) / (n_samples - n_terms - 1)


def pcoa(distance: pd.DataFrame) -> pd.DataFrame:
    """Principal coordinates of a square distance matrix.

    Only axes with positive eigenvalues are kept, so the coordinates
    reproduce the Euclidean part of the distances.

    Args:
        distance: Square samples × samples distance matrix.

    Returns:
        Samples × axes coordinates named PCo1, PCo2, ...
    """
    dm = to_distance_matrix(distance, name="Distance")
    with warnings.catch_warnings():
        # negative eigenvalues of non-Euclidean distances are dropped below
        warnings.simplefilter('ignore', RuntimeWarning)
        ordination = PCoA(dm)
    values = ordination.eigvals.to_numpy(dtype=float)
    keep = values > EIGEN_TOLERANCE * max(np.abs(values).max(), 1e-300)
    if not keep.any():
        raise StatTestFailure("Distance matrix has no positive principal coordinates")
    coords = ordination.samples.to_numpy(dtype=float)[:, keep]
    return pd.DataFrame(
        coords, index=distance.index,
        columns=[f"PCo{i+1}" for i in range(coords.shape[1])]
    )


def anova_by_terms(
    response: pd.DataFrame,
    env: pd.DataFrame,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE,
    verbose: bool = False
) -> pd.DataFrame:
    """Sequential (type I) permutation test of each explanatory term.

    Terms enter in column order; each one is tested on the variance it adds to
    the terms before it. Rows of the response are permuted.

    Returns:
        Table indexed by term plus 'Residual' with columns Df, Variance, F and
        Pr(>F).
    """
    Y, X = _prepare(response, env)
    n, m = X.shape
    total = _inertia(Y)
    hats = [_hat_matrix(X[:, :j + 1]) for j in range(m)]
    ranks = [_rank(X[:, :j + 1]) for j in range(m)]
    dfs = np.diff([0] + ranks)
    df_resid = n - 1 - ranks[-1]

    def _f_values(Yp: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float]:
        cumulative = np.array([_inertia(H @ Yp) for H in hats])
        added = np.diff(np.concatenate([[0.0], cumulative]))
        residual = total - cumulative[-1]
        with np.errstate(divide='ignore', invalid='ignore'):
            f = (added / dfs) / (residual / df_resid)
        f[(dfs == 0) | (df_resid <= 0)] = np.nan
        return f, added, residual

    f_obs, added, residual = _f_values(Y)
    exceed = np.zeros(m)
    for order in _iter_permutations(n, permutations, random_state, "Permutation test by terms", verbose):
        f_perm, _, _ = _f_values(Y[order])
        exceed += f_perm >= f_obs
    p_values = np.where(np.isnan(f_obs), np.nan, (exceed + 1) / (permutations + 1))

    table = pd.DataFrame({
        'Df': list(dfs) + [df_resid],
        'Variance': list(added) + [residual],
        'F': list(f_obs) + [np.nan],
        'Pr(>F)': list(p_values) + [np.nan],
    }, index=list(env.columns) + ['Residual'], columns=ANOVA_COLUMNS)
    return table


def anova_by_axis(
    response: pd.DataFrame,
    env: pd.DataFrame,
    eigenvalues: pd.Series,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE,
    verbose: bool = False
) -> pd.DataFrame:
    """Permutation test of each constrained axis.

    The eigenvalue of each axis is compared with the eigenvalue of the same
    rank in models fitted to row-permuted responses.
    """
    Y, X = _prepare(response, env)
    n = X.shape[0]
    H = _hat_matrix(X)
    total = _inertia(Y)
    eig = eigenvalues.to_numpy(dtype=float)
    k = len(eig)
    residual = total - eig.sum()
    df_resid = n - 1 - _rank(X)

    with np.errstate(divide='ignore', invalid='ignore'):
        f_obs = eig / (residual / df_resid) if df_resid > 0 else np.full(k, np.nan)
    exceed = np.zeros(k)
    for order in _iter_permutations(n, permutations, random_state, "Permutation test by axis", verbose):
        singular = np.linalg.svd(H @ Y[order], compute_uv=False)
        eig_perm = np.zeros(k)
        head = (singular[:k] ** 2) / (n - 1)
        eig_perm[:len(head)] = head
        exceed += eig_perm >= eig
    p_values = np.where(np.isnan(f_obs), np.nan, (exceed + 1) / (permutations + 1))

    return pd.DataFrame({
        'Df': [1] * k + [df_resid],
        'Variance': list(eig) + [residual],
        'F': list(f_obs) + [np.nan],
        'Pr(>F)': list(p_values) + [np.nan],
    }, index=list(eigenvalues.index) + ['Residual'], columns=ANOVA_COLUMNS)


def model_r2(response: pd.DataFrame, env: pd.DataFrame) -> Tuple[float, float]:
    """R² and adjusted R² of the response constrained by `env`."""
    Y, X = _prepare(response, env)
    r2 = _inertia(_hat_matrix(X) @ Y) / _inertia(Y) if env.shape[1] else 0.0
    return r2, adjusted_r2(r2, X.shape[0], _rank(X))


def forward_selection(
    response: pd.DataFrame,
    env: pd.DataFrame,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE,
    alpha: float = constants.DEFAULT_SELECTION_ALPHA
) -> List[str]:
    """Forward selection of explanatory variables on adjusted R².

    At each step the candidate giving the highest adjusted R² is added as long
    as it improves the current model, does not exceed the adjusted R² of the
    full model and its sequential permutation p-value is at most `alpha`.

    Returns:
        Selected variable names in the order they entered.
    """
    _, full_adj = model_r2(response, env)
    selected: List[str] = []
    current = 0.0
    remaining = list(env.columns)
    while remaining:
        scores = {c: model_r2(response, env[selected + [c]])[1] for c in remaining}
        best = max(remaining, key=lambda c: -np.inf if np.isnan(scores[c]) else scores[c])
        best_adj = scores[best]
        if np.isnan(best_adj) or best_adj <= current or best_adj > full_adj:
            break
        terms = anova_by_terms(response, env[selected + [best]], permutations, random_state)
        p_val = terms.loc[best, 'Pr(>F)']
        logger.debug(f"Forward selection: + {best} (adj. R2 {best_adj:.4f}, p = {p_val:.4f})")
        if not p_val <= alpha:
            break
        selected.append(best)
        remaining.remove(best)
        current = best_adj
    return selected


def fit_rda(
    response: pd.DataFrame,
    env: pd.DataFrame,
    use_dbrda: bool = False,
    taxa_level: Optional[str] = None,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE,
    verbose: bool = False
) -> RdaResult:
    """Redundancy analysis of a response table on environmental variables.

    The centred response is regressed on the explanatory variables and the
    fitted values are decomposed with PCA; the components are the constrained
    axes. For db-RDA the response is the principal coordinates of a distance
    matrix (see `pcoa`).

    Args:
        response:     Samples × features (abundances, or principal coordinates).
        env:          Samples × numeric variables, same sample order.
        use_dbrda:    Whether `response` holds principal coordinates.
        taxa_level:   Taxonomic level of the abundances, kept for plotting.
        permutations: Permutations of the term and axis tests.
        random_state: Seed of the permutations.
        verbose:      Show progress bars for the permutation tests.

    Returns:
        RdaResult with eigenvalues, site ('wa'), species and biplot scores,
        R², adjusted R² and both permutation tables.
    """
    if env.shape[1] == 0:
        raise DataShapeError("RDA needs at least one environmental variable")
    Y, X = _prepare(response, env)
    n, m = X.shape
    total = _inertia(Y)
    if total <= 0:
        raise StatTestFailure("Response table has no variation")

    fitted = LinearRegression().fit(X, Y).predict(X)
    fitted = _centre(fitted)
    k = min(m, n - 1, Y.shape[1])
    pca = PCA(n_components=k).fit(fitted)
    keep = pca.explained_variance_ > EIGEN_TOLERANCE * total
    if not keep.any():
        raise StatTestFailure("Environmental variables explain no variation of the response")
    axes = pca.components_[keep]
    names = _axis_names(int(keep.sum()))
    eigenvalues = pd.Series(pca.explained_variance_[keep], index=names, name='eigenvalue')

    lc_scores = fitted @ axes.T
    site_scores = pd.DataFrame(Y @ axes.T, index=response.index, columns=names)
    biplot_scores = pd.DataFrame(
        _column_correlations(X, lc_scores), index=env.columns, columns=names
    )
    species_scores = None
    if not use_dbrda:
        species_scores = pd.DataFrame(
            axes.T * np.sqrt(eigenvalues.to_numpy()), index=response.columns, columns=names
        )

    r2 = float(eigenvalues.sum() / total)
    r2_adj = adjusted_r2(r2, n, _rank(X))
    anova_terms = anova_by_terms(response, env, permutations, random_state, verbose)
    anova_axis = anova_by_axis(response, env, eigenvalues, permutations, random_state, verbose)
    logger.debug(
        f"{'db-RDA' if use_dbrda else 'RDA'}: {len(names)} constrained axes, "
        f"R2 = {r2:.4f}, adj. R2 = {r2_adj:.4f}"
    )
    return RdaResult(
        use_dbrda=use_dbrda,
        taxa_level=taxa_level,
        env_data=env,
        eigenvalues=eigenvalues,
        site_scores=site_scores,
        biplot_scores=biplot_scores,
        species_scores=species_scores,
        total_inertia=total,
        r2=r2,
        r2_adjusted=r2_adj,
        anova_terms=anova_terms,
        anova_axis=anova_axis,
        selected_variables=list(env.columns),
    )


def envfit(
    scores: pd.DataFrame,
    env: pd.DataFrame,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE
) -> pd.DataFrame:
    """Fit environmental vectors onto an ordination.

    Each variable is regressed on the ordination scores; the normalised
    coefficients give the direction of its arrow and R² its goodness of fit.
    The p-value comes from permuting the variable.

    Returns:
        Table indexed by variable: one direction cosine per axis, r2, p_value.
    """
    S = scores.loc[env.index].to_numpy(dtype=float)
    rows = []
    for column in env.columns:
        x = env[column].to_numpy(dtype=float)
        if np.ptp(x) == 0:
            rows.append([np.nan] * S.shape[1] + [np.nan, np.nan])
            continue
        model = LinearRegression().fit(S, x)
        r2 = model.score(S, x)
        norm = np.linalg.norm(model.coef_)
        heads = model.coef_ / norm if norm > 0 else np.full(S.shape[1], np.nan)
        exceed = 0
        for order in _iter_permutations(len(x), permutations, random_state):
            if LinearRegression().fit(S, x[order]).score(S, x[order]) >= r2:
                exceed += 1
        p_val = (exceed + 1) / (permutations + 1) if permutations else np.nan
        rows.append(list(heads) + [r2, p_val])
    return pd.DataFrame(rows, index=env.columns, columns=list(scores.columns) + ['r2', 'p_value'])


def arrow_multiplier(
    arrows: pd.DataFrame,
    sites: pd.DataFrame,
    fill: float = constants.DEFAULT_ARROW_FILL
) -> float:
    """Factor that makes the longest arrow fill `fill` of the site score range.

    Both frames hold two columns (x, y); arrows start at the origin.
    """
    extent = np.array([
        sites.iloc[:, 0].min(), sites.iloc[:, 0].max(),
        sites.iloc[:, 1].min(), sites.iloc[:, 1].max()
    ], dtype=float)
    reach = np.array([
        arrows.iloc[:, 0].min(), arrows.iloc[:, 0].max(),
        arrows.iloc[:, 1].min(), arrows.iloc[:, 1].max()
    ], dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        ratios = extent / reach
    ratios = ratios[np.isfinite(ratios) & (ratios > 0)]
    if ratios.size == 0:
        return 1.0
    return float(fill * ratios.min())


def rescale_arrows(
    arrows: pd.DataFrame,
    min_perc: float = 1,
    max_perc: float = 10
) -> pd.DataFrame:
    """Stretch arrow lengths linearly into [min_perc, max_perc] × the longest
    squared length while keeping every arrow's direction."""
    x = arrows.iloc[:, 0].to_numpy(dtype=float)
    y = arrows.iloc[:, 1].to_numpy(dtype=float)
    squared = x ** 2 + y ** 2
    low, high = min_perc * squared.max(), max_perc * squared.max()
    spread = squared.max() - squared.min()
    slope = (high - low) / spread if spread > 0 else 0.0
    target = low + slope * (squared - squared.min())
    with np.errstate(divide='ignore', invalid='ignore'):
        ratio = np.abs(x / y)
        new_x = np.where(
            np.isinf(ratio), np.sqrt(target), np.sqrt(target * ratio ** 2 / (ratio ** 2 + 1))
        )
        new_y = np.sqrt(target / (ratio ** 2 + 1))
    # zero-length arrows stay at the origin
    new_x = np.where(squared == 0, 0.0, new_x) * np.where(x > 0, 1, -1)
    new_y = np.where(squared == 0, 0.0, new_y) * np.where(y > 0, 1, -1)
    rescaled = arrows.copy()
    rescaled.iloc[:, 0] = new_x
    rescaled.iloc[:, 1] = new_y
    return rescaled
