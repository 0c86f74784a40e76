# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import leaves_list, linkage
from scipy.spatial.distance import pdist

# Local Imports
from microtrans import constants
from microtrans.exceptions import ConfigurationError, StatTestFailure
from microtrans.figures.tools import axis_label, format_number, format_p_value, prep_step
from microtrans.models import RdaResult
from microtrans.stats.ordination import arrow_multiplier, rescale_arrows
from microtrans.stats.tests import correlation_test, linear_fit

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== CLASSES ======================================= #

@dataclass
class HeatmapData:
    """Correlation heatmap of features against environmental variables.

    In single-partition and clustered modes `correlation` and `significance`
    are feature × variable matrices, ordered by `row_order` and
    `column_order`. With several partitions and no clustering the heatmap is
    faceted by partition and only `data` (long format) is filled.
    """
    data: pd.DataFrame
    cor_method: str
    correlation: Optional[pd.DataFrame] = None
    significance: Optional[pd.DataFrame] = None
    row_order: List[str] = field(default_factory=list)
    column_order: List[str] = field(default_factory=list)
    faceted: bool = False
    clustered: bool = False


@dataclass
class RdaPlotData:
    """Biplot data of a (db-)RDA on its first two axes."""
    sites: pd.DataFrame
    arrows: pd.DataFrame
    eigen_labels: List[str]
    species: Optional[pd.DataFrame] = None
    taxa_arrows: Optional[pd.DataFrame] = None


@dataclass
class ScatterFitData:
    """Points, fitted statistics and the annotation of a scatter plot."""
    data: pd.DataFrame
    use_cor: bool
    cor_method: str
    fit: Dict[str, float]
    label: str
    text_x: float
    text_y: float

# ================================= HEATMAP HELPERS ================================== #

def _cluster_order(matrix: pd.DataFrame, metric: str = 'euclidean') -> List[Any]:
    """Leaf order of a complete-linkage clustering of the rows."""
    if len(matrix) < 2:
        return list(matrix.index)
    distances = pdist(matrix.to_numpy(dtype=float), metric=metric)
    if not np.all(np.isfinite(distances)):
        logger.debug(f"Non-finite {metric} distances; keeping the input order")
        return list(matrix.index)
    return list(matrix.index[leaves_list(linkage(distances, method='complete'))])


def _wide(data: pd.DataFrame, value: str, fill: Any) -> pd.DataFrame:
    table = data.pivot_table(
        index='feature_name', columns='variable_name', values=value,
        aggfunc='first', observed=True, sort=False
    )
    rows = list(dict.fromkeys(data['feature_name']))
    columns = list(dict.fromkeys(data['variable_name']))
    return table.reindex(index=rows, columns=columns).fillna(fill)

# ==================================== FUNCTIONS ===================================== #

@prep_step("Building correlation heatmap data")
def build_heatmap_data(
    res_cor: pd.DataFrame,
    cor_method: str,
    filter_feature: Optional[Sequence[str]] = None,
    keep_full_name: bool = False,
    keep_prefix: bool = True,
    pheatmap: bool = False
) -> HeatmapData:
    """Reshape a correlation table into heatmap matrices.

    Args:
        res_cor:        Frame of a CorrelationResult.
        cor_method:     Correlation method, used as the colour legend title.
        filter_feature: Drop features whose significance labels all fall in
                        this collection (e.g. [""] drops features without
                        any star).
        keep_full_name: Keep the full lineage instead of the last level.
        keep_prefix:    Keep rank prefixes such as 'g__'.
        pheatmap:       Clustered heatmap: correlation distances on both axes,
                        partitions folded into the column labels.
    """
    use_data = res_cor.copy()
    use_data['variable_name'] = use_data['variable_name'].astype(str)
    use_data['feature_name'] = use_data['feature_name'].astype(str)

    if filter_feature is not None:
        excluded = set(filter_feature)
        keep = [
            name for name, rows in use_data.groupby('feature_name', sort=False)
            if not set(rows['significance_tier']).issubset(excluded)
        ]
        use_data = use_data.loc[use_data['feature_name'].isin(keep)]
    if not keep_full_name:
        use_data['feature_name'] = use_data['feature_name'].str.replace(r".*\|", "", regex=True)
    if not keep_prefix:
        use_data['feature_name'] = use_data['feature_name'].str.replace(r".*__", "", regex=True)

    n_partitions = use_data['partition_label'].nunique()
    if pheatmap and n_partitions > 1:
        use_data['variable_name'] = (
            use_data['partition_label'].astype(str) + ": " + use_data['variable_name']
        )
    if n_partitions > 1 and not pheatmap:
        return HeatmapData(data=use_data, cor_method=cor_method, faceted=True)

    correlation = _wide(use_data, 'correlation', 0.0)
    significance = _wide(use_data, 'significance_tier', "")
    if pheatmap:
        # rows without variation cannot be clustered on correlation distance
        varying = correlation.std(axis=1) != 0
        correlation, significance = correlation.loc[varying], significance.loc[varying]
        row_order = _cluster_order(correlation, metric='correlation')
        column_order = _cluster_order(correlation.T, metric='correlation')
    else:
        row_order = _cluster_order(correlation)
        column_order = _cluster_order(correlation.T)
    return HeatmapData(
        data=use_data,
        cor_method=cor_method,
        correlation=correlation.loc[row_order, column_order],
        significance=significance.loc[row_order, column_order],
        row_order=row_order,
        column_order=column_order,
        clustered=pheatmap,
    )


@prep_step("Building RDA biplot data")
def build_rda_plot_data(
    rda: RdaResult,
    sample_table: Optional[pd.DataFrame] = None,
    show_taxa: int = 10,
    adjust_arrow_length: bool = False,
    min_perc_env: float = 1,
    max_perc_env: float = 100,
    min_perc_tax: float = 1,
    max_perc_tax: float = 100
) -> RdaPlotData:
    """Sites, scaled environmental arrows and top taxa arrows of an RDA.

    Arrows are multiplied so that the longest one fills 75% of the site
    range. Taxa arrows (RDA only) drop unresolved names and keep the
    `show_taxa` longest.
    """
    if rda.site_scores.shape[1] < 2:
        raise StatTestFailure(
            "The biplot needs two constrained axes; add environmental variables"
        )
    xy = ['x', 'y']
    sites = rda.site_scores.iloc[:, :2].set_axis(xy, axis=1)
    if sample_table is not None:
        sites = sites.join(sample_table.drop(columns=xy, errors='ignore'), how='left')

    biplot = rda.biplot_scores.iloc[:, :2].set_axis(xy, axis=1)
    arrows = biplot * arrow_multiplier(biplot, sites[xy])

    proportions = rda.eigenvalues / rda.eigenvalues.sum()
    eigen_labels = [axis_label("RDA", i + 1, proportions.iloc[i]) for i in range(2)]

    species = taxa_arrows = None
    if not rda.use_dbrda and rda.species_scores is not None:
        species = rda.species_scores.iloc[:, :2].set_axis(xy, axis=1)
        taxa_arrows = species * arrow_multiplier(species, sites[xy])
        taxa_arrows['label'] = [str(name) for name in taxa_arrows.index]
        taxa_arrows = taxa_arrows.loc[
            ~taxa_arrows['label'].str.contains(constants.UNLABELLED_TAXA_PATTERN)
        ]
        length = taxa_arrows['x'] ** 2 + taxa_arrows['y'] ** 2
        taxa_arrows = taxa_arrows.loc[
            length.sort_values(ascending=False, kind='mergesort').index[:show_taxa]
        ]

    if adjust_arrow_length:
        arrows = rescale_arrows(arrows, min_perc=min_perc_env, max_perc=max_perc_env)
        if taxa_arrows is not None and len(taxa_arrows):
            taxa_arrows[xy] = rescale_arrows(taxa_arrows[xy], min_perc_tax, max_perc_tax)
    return RdaPlotData(
        sites=sites,
        arrows=arrows,
        eigen_labels=eigen_labels,
        species=species,
        taxa_arrows=taxa_arrows,
    )


def fit_label(
    fit: Dict[str, float],
    use_cor: bool = True,
    pvalue_trim: int = 4,
    cor_coef_trim: int = 3,
    lm_fir_trim: int = 2,
    lm_sec_trim: int = 2,
    lm_squ_trim: int = 2
) -> str:
    """Annotation text: 'R = r; P = p' or 'y = b·x + a, R² = r2, P = p'."""
    p_text = format_p_value(fit['p_value'], pvalue_trim)
    if use_cor:
        return f"R = {format_number(fit['estimate'], cor_coef_trim)}; P{p_text}"
    intercept = round(fit['intercept'], lm_sec_trim)
    sign = f" - {format_number(abs(intercept), lm_sec_trim)}" if intercept < 0 \
        else f" + {format_number(intercept, lm_sec_trim)}"
    return (
        f"y = {format_number(fit['slope'], lm_fir_trim)}·x{sign}, "
        f"R² = {format_number(fit['r_squared'], lm_squ_trim)}, P{p_text}"
    )


@prep_step("Building scatter fit data")
def build_scatterfit_data(
    x: np.ndarray,
    y: np.ndarray,
    use_cor: bool = True,
    cor_method: str = constants.DEFAULT_COR_METHOD,
    text_x_pos: Optional[float] = None,
    text_y_pos: Optional[float] = None,
    **trims: int
) -> ScatterFitData:
    """Correlation test or least-squares line between two vectors."""
    data = pd.DataFrame({'x': np.asarray(x, dtype=float), 'y': np.asarray(y, dtype=float)})
    if use_cor:
        estimate, p_val = correlation_test(data['x'], data['y'], cor_method)
        if np.isnan(p_val):
            raise StatTestFailure("Correlation is undefined for these vectors")
        fit = {'estimate': estimate, 'p_value': p_val}
    else:
        complete = data.dropna()
        if len(complete) < 3:
            raise StatTestFailure(f"Linear fit needs at least 3 points, got {len(complete)}")
        fit = linear_fit(complete['x'], complete['y'])
    unknown = set(trims) - {'pvalue_trim', 'cor_coef_trim', 'lm_fir_trim', 'lm_sec_trim', 'lm_squ_trim'}
    if unknown:
        raise ConfigurationError(f"Unknown rounding options: {sorted(unknown)}")
    return ScatterFitData(
        data=data,
        use_cor=use_cor,
        cor_method=cor_method,
        fit=fit,
        label=fit_label(fit, use_cor=use_cor, **trims),
        text_x=data['x'].max() * 0.8 if text_x_pos is None else text_x_pos,
        text_y=data['y'].max() * 0.8 if text_y_pos is None else text_y_pos,
    )
