# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import itertools
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from microtrans import constants
from microtrans.figures.tools import prep_step
from microtrans.stats.multitest import pair_compare_label
from microtrans.stats.tests import compare_groups

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# Letters sit this fraction of the highest position above each group
BOXPLOT_LETTER_OFFSET = 30
MEAN_SE_LETTER_OFFSET = 50

# ==================================== CLASSES ======================================= #

@dataclass
class AlphaPlotData:
    """Everything needed to draw one alpha diversity panel.

    Attributes:
        measure:     Alpha diversity measure shown on the y axis.
        group:       Sample table column on the x axis.
        data:        Long-format rows of `measure`; `group` is an ordered
                     categorical following `group_order`.
        group_order: Order of the groups along the x axis.
        use_boxplot: Boxplot (True) or mean ± standard error (False).
        summary:     Per-group N, Mean, SE and the top of the drawn element.
        letters:     Columns x, y, add: letter label positions, or None.
        comparisons: Columns group1, group2, method, p_value, label for
                     paired comparison brackets, or None.
    """
    measure: str
    group: str
    data: pd.DataFrame
    group_order: List[Any]
    use_boxplot: bool
    summary: pd.DataFrame
    letters: Optional[pd.DataFrame] = None
    comparisons: Optional[pd.DataFrame] = None

    @property
    def ylabel(self) -> str:
        return self.measure

# ==================================== FUNCTIONS ===================================== #

def order_groups_by_mean(data: pd.DataFrame, group: str) -> List[Any]:
    """Group labels sorted by decreasing mean value."""
    means = data.groupby(group, sort=False, observed=True)[constants.VALUE_COLUMN].mean()
    return list(means.sort_values(ascending=False, kind='mergesort').index)


@prep_step("Summarising groups")
def group_summary(data: pd.DataFrame, group: str, group_order: Sequence[Any]) -> pd.DataFrame:
    """N, Mean, SE, Max and mean + SE per group, indexed in `group_order`."""
    grouped = data.groupby(group, sort=False, observed=True)[constants.VALUE_COLUMN]
    summary = grouped.agg(N='count', Mean='mean', SD='std', Max='max')
    summary['SE'] = (summary['SD'] / np.sqrt(summary['N'])).fillna(0)
    summary['MeanSE'] = summary['Mean'] + summary['SE']
    return summary.reindex(list(group_order))


@prep_step("Placing letters")
def letter_positions(
    summary: pd.DataFrame,
    letters: pd.Series,
    use_boxplot: bool = True
) -> pd.DataFrame:
    """Coordinates of the post-hoc letters above each group.

    Boxplots place letters at max + (highest max) / 30; mean ± SE plots at
    mean + SE + (highest mean + SE) / 50. Groups missing from `letters` get
    a missing label.
    """
    if use_boxplot:
        top = summary['Max']
        position = top + top.max() / BOXPLOT_LETTER_OFFSET
    else:
        top = summary['MeanSE']
        position = top + top.max() / MEAN_SE_LETTER_OFFSET
    labels = letters.reindex(summary.index)
    return pd.DataFrame({
        'x': list(summary.index),
        'y': position.to_numpy(),
        'add': labels.to_numpy(),
    })


@prep_step("Running paired comparisons")
def pair_comparisons(
    data: pd.DataFrame,
    group: str,
    all_groups: Sequence[Any],
    pair_filter: str = "",
    method: str = 'wilcox.test'
) -> pd.DataFrame:
    """Significance of every pair of groups for one measure.

    Pairs are drawn from `all_groups` in order; a pair is kept when the
    regular expression `pair_filter` matches either member.
    """
    pattern = re.compile(pair_filter)
    rows = []
    for first, second in itertools.combinations(list(all_groups), 2):
        if not (pattern.search(str(first)) or pattern.search(str(second))):
            continue
        samples = [
            data.loc[data[group] == label, constants.VALUE_COLUMN].dropna().to_numpy()
            for label in (first, second)
        ]
        if any(len(s) == 0 for s in samples):
            logger.debug(f"Skipping comparison {first} vs {second}: empty group")
            continue
        _, p_val = compare_groups(samples, method)
        rows.append({
            'group1': first,
            'group2': second,
            'method': method,
            'p_value': p_val,
            'label': pair_compare_label(p_val),
        })
    return pd.DataFrame(rows, columns=['group1', 'group2', 'method', 'p_value', 'label'])


def build_alpha_plot_data(
    alpha_data: pd.DataFrame,
    measure: str,
    group: str,
    letters: Optional[pd.Series] = None,
    use_boxplot: bool = True,
    order_x_mean: bool = True,
    pair_compare: bool = False,
    pair_compare_filter: str = "",
    pair_compare_method: str = 'wilcox.test'
) -> AlphaPlotData:
    """Plot-ready data for one measure of a long-format alpha diversity table."""
    use_data = alpha_data.loc[alpha_data[constants.MEASURE_COLUMN] == measure].copy()
    if order_x_mean:
        group_order = order_groups_by_mean(use_data, group)
    else:
        group_order = sorted(use_data[group].dropna().unique(), key=str)
    use_data[group] = pd.Categorical(use_data[group], categories=group_order, ordered=True)

    summary = group_summary(use_data, group, group_order)
    letter_frame = None
    if letters is not None:
        letter_frame = letter_positions(summary, letters, use_boxplot)
    comparisons = None
    if pair_compare:
        all_groups = list(pd.unique(alpha_data[group].dropna()))
        comparisons = pair_comparisons(
            use_data.assign(**{group: use_data[group].astype(object)}),
            group, all_groups, pair_compare_filter, pair_compare_method
        )
    return AlphaPlotData(
        measure=measure,
        group=group,
        data=use_data,
        group_order=group_order,
        use_boxplot=use_boxplot,
        summary=summary,
        letters=letter_frame,
        comparisons=comparisons,
    )
