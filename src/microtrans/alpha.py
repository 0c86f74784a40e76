# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import itertools
import logging
from contextlib import nullcontext
from typing import Any, Dict, List, Optional, Sequence, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from microtrans import constants
from microtrans.config import get_section
from microtrans.exceptions import (
    ConfigurationError, NoDataError, StatTestFailure, TooManyGroupsError
)
from microtrans.figures.alpha import AlphaPlotData, build_alpha_plot_data
from microtrans.logger import _format_task_desc, get_progress_bar
from microtrans.models import (
    AlphaDiffResult, ComparisonTableResult, GroupingResult, MeasurementRecord,
    PairwiseComparisonResult, PostHocGrouping, RawSummaryResult
)
from microtrans.stats.multitest import significance_tier
from microtrans.stats.posthoc import anova_table, duncan_test, factor_term, fit_anova
from microtrans.stats.tests import kruskal_test, summary_se
from microtrans.stats.utils import measurement_records, wide_to_long

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

DIFF_METHODS = {'kw': 'KW', 'anova': 'anova'}

# ==================================== CLASSES ======================================= #

class DiversityDifferenceEngine:
    """Alpha diversity statistics across the groups of a sample table.

    Args:
        dataset:         Object exposing `alpha_diversity` (samples × measures)
                         and `sample_table` (samples × attributes).
        group:           Sample table column used for the statistics.
        order_x:         Sample table column, or list of sample names, giving
                         the order of the `Sample` column.
        alpha_diversity: Alpha diversity table, instead of `dataset`.
        sample_table:    Sample table, instead of `dataset`.
        config:          Loaded configuration; the `alpha` section supplies
                         `max_kw_groups` and `duncan_alpha`.
    """
    def __init__(
        self,
        dataset: Any = None,
        group: Optional[str] = None,
        order_x: Union[str, Sequence[str], None] = None,
        alpha_diversity: Optional[pd.DataFrame] = None,
        sample_table: Optional[pd.DataFrame] = None,
        config: Optional[Dict] = None
    ):
        settings = get_section(config, 'alpha')
        self.max_kw_groups = settings.get('max_kw_groups', constants.DEFAULT_MAX_KW_GROUPS)
        self.duncan_alpha = settings.get('duncan_alpha', constants.DEFAULT_DUNCAN_ALPHA)

        if alpha_diversity is None:
            alpha_diversity = getattr(dataset, 'alpha_diversity', None)
        if sample_table is None:
            sample_table = getattr(dataset, 'sample_table', None)
        if alpha_diversity is None:
            raise ConfigurationError(
                "The alpha diversity has not been calculated! Please first calculate "
                "it with microtrans.diversity.alpha_diversity"
            )
        if group is not None and (sample_table is None or group not in sample_table.columns):
            raise ConfigurationError(f"Group column '{group}' not found in the sample table")

        self.group = group
        kept = [c for c in alpha_diversity.columns if not constants.SE_COLUMN_PATTERN.match(str(c))]
        alpha_data = wide_to_long(alpha_diversity[kept], sample_table)

        if order_x is not None:
            if isinstance(order_x, str):
                if sample_table is None or order_x not in sample_table.columns:
                    raise ConfigurationError(f"order_x column '{order_x}' not found in the sample table")
                levels = list(pd.unique(sample_table[order_x]))
            else:
                levels = list(order_x)
            alpha_data[constants.SAMPLE_COLUMN] = pd.Categorical(
                alpha_data[constants.SAMPLE_COLUMN], categories=levels, ordered=True
            )

        self.alpha_stat: Optional[pd.DataFrame] = None
        if group is not None:
            self.alpha_stat = summary_se(
                alpha_data, constants.VALUE_COLUMN, [group, constants.MEASURE_COLUMN]
            )
            logger.info("The group statistics are stored in object.alpha_stat ...")
        self.alpha_data = alpha_data
        logger.info("The transformed diversity data is stored in object.alpha_data ...")

        self.res_alpha_diff: Optional[AlphaDiffResult] = None
        self.results: Dict[str, Any] = {}

    @property
    def records(self) -> List[MeasurementRecord]:
        return measurement_records(self.alpha_data, self.group)

    @property
    def measures(self) -> List[str]:
        return list(pd.unique(self.alpha_data[constants.MEASURE_COLUMN].astype(str)))

    def _require_group(self, purpose: str) -> str:
        if self.group is None:
            raise ConfigurationError(f"A group column is required for {purpose}")
        return self.group

    def _select_measures(self, measures: Optional[Sequence[str]]) -> List[str]:
        available = self.measures
        if measures is None:
            return available
        if isinstance(measures, str):
            measures = [measures]
        missing = [m for m in measures if m not in available]
        if missing:
            logger.warning(f"Measures not found in alpha_data and skipped: {missing}")
        selected = [m for m in measures if m in available]
        if not selected:
            raise NoDataError(
                f"None of the requested measures {list(measures)} are in alpha_data; "
                f"available: {available}"
            )
        return selected

    def _measure_rows(self, measure: str) -> pd.DataFrame:
        return self.alpha_data.loc[self.alpha_data[constants.MEASURE_COLUMN] == measure]

    def cal_diff(
        self,
        method: str = "KW",
        measures: Optional[Sequence[str]] = None,
        anova_set: Optional[str] = None,
        verbose: bool = False
    ) -> AlphaDiffResult:
        """Test the difference of alpha diversity across groups.

        Args:
            method:    'KW' (Kruskal-Wallis on every pair of groups plus all
                       groups together) or 'anova' (ANOVA with Duncan letters).
            measures:  Measures to test; all measures by default.
            anova_set: Right-hand side of a custom ANOVA design such as
                       'block + N*P*K'; the result then holds one ANOVA table
                       per measure instead of letters.
            verbose:   Show a progress bar over the measures.

        Returns:
            ComparisonTableResult, GroupingResult or RawSummaryResult. The
            result is also kept as `res_alpha_diff`.
        """
        key = str(method).lower()
        if key not in DIFF_METHODS:
            raise ConfigurationError(
                f"Unknown method '{method}'; expected one of {list(DIFF_METHODS.values())}"
            )
        selected = self._select_measures(measures)
        if key == 'kw':
            result = self._kruskal_wallis(selected, DIFF_METHODS[key], verbose)
        elif anova_set is None:
            result = self._anova_letters(selected, verbose)
        else:
            result = self._anova_design(selected, anova_set, verbose)

        self.res_alpha_diff = result
        self.results['alpha_diff'] = result
        logger.info("The result is stored in object.res_alpha_diff ...")
        return result

    def _progress(self, verbose: bool):
        return get_progress_bar() if verbose else nullcontext()

    def _kruskal_wallis(
        self,
        measures: List[str],
        test_kind: str,
        verbose: bool
    ) -> ComparisonTableResult:
        group = self._require_group("the KW method")
        n_groups = self.alpha_data[group].dropna().nunique()
        if n_groups > self.max_kw_groups:
            raise TooManyGroupsError(
                f"There are too many groups ({n_groups} > {self.max_kw_groups}) to do "
                f"paired comparisons using KW method, please use anova!"
            )

        comparisons = []
        with self._progress(verbose) as progress:
            if progress is not None:
                task_id = progress.add_task(_format_task_desc("Kruskal-Wallis tests"), total=len(measures))
            for measure in measures:
                div_table = self._measure_rows(measure)[[group, constants.VALUE_COLUMN]]
                labels = list(pd.unique(div_table[group].dropna()))
                if len(labels) < 2:
                    raise StatTestFailure(
                        f"Measure '{measure}' has fewer than 2 groups in '{group}'"
                    )
                # Every pair of groups, then all groups together when there are more than 2
                for size in dict.fromkeys([2, len(labels)]):
                    for subset in itertools.combinations(labels, size):
                        rows = div_table.loc[div_table[group].isin(subset)]
                        _, p_val = kruskal_test(rows[constants.VALUE_COLUMN], rows[group])
                        comparisons.append(PairwiseComparisonResult(
                            group_set=tuple(subset),
                            measure_name=measure,
                            test_kind=test_kind,
                            p_value=p_val,
                            significance_tier=significance_tier(p_val),
                        ))
                if progress is not None:
                    progress.update(task_id, advance=1)
        return ComparisonTableResult(comparisons=tuple(comparisons), method=test_kind)

    def _anova_letters(self, measures: List[str], verbose: bool) -> GroupingResult:
        group = self._require_group("Duncan letters")
        groupings = []
        with self._progress(verbose) as progress:
            if progress is not None:
                task_id = progress.add_task(_format_task_desc("ANOVA + Duncan tests"), total=len(measures))
            for measure in measures:
                use_data = self._measure_rows(measure)
                model = fit_anova(use_data, constants.VALUE_COLUMN, factor_term(group))
                letters, means = duncan_test(model, group, alpha=self.duncan_alpha)
                groupings.append(PostHocGrouping(measure_name=measure, letters=letters, means=means))
                if progress is not None:
                    progress.update(task_id, advance=1)
        return GroupingResult(groupings=tuple(groupings))

    def _anova_design(
        self,
        measures: List[str],
        anova_set: str,
        verbose: bool
    ) -> RawSummaryResult:
        summaries = {}
        with self._progress(verbose) as progress:
            if progress is not None:
                task_id = progress.add_task(_format_task_desc(f"ANOVA: {anova_set}"), total=len(measures))
            for measure in measures:
                model = fit_anova(self._measure_rows(measure), constants.VALUE_COLUMN, anova_set)
                summaries[measure] = anova_table(model)
                if progress is not None:
                    progress.update(task_id, advance=1)
        return RawSummaryResult(summaries=summaries, design=anova_set)

    def plot_alpha_data(
        self,
        measure: str = constants.DEFAULT_MEASURE,
        group: Optional[str] = None,
        add_letter: bool = False,
        use_boxplot: bool = True,
        order_x_mean: bool = True,
        pair_compare: bool = False,
        pair_compare_filter: str = "",
        pair_compare_method: str = "wilcox.test"
    ) -> AlphaPlotData:
        """Plot-ready data for one measure.

        Args:
            measure:             Alpha diversity measure to show.
            group:               Column on the x axis; defaults to the engine's group.
            add_letter:          Add the Duncan letters of the last `cal_diff(method='anova')`.
            use_boxplot:         Boxplot positions (True) or mean ± SE positions.
            order_x_mean:        Order groups by decreasing mean.
            pair_compare:        Add paired significance tests between groups.
            pair_compare_filter: Regular expression a pair member must match.
            pair_compare_method: 'wilcox.test', 't.test', 'kruskal.test' or 'anova'.
        """
        group = group or self._require_group("plotting")
        if group not in self.alpha_data.columns:
            raise ConfigurationError(f"Group column '{group}' not found in alpha_data")
        if measure not in self.measures:
            raise ConfigurationError(f"Measure '{measure}' not found; available: {self.measures}")

        letters = None
        if add_letter:
            if not isinstance(self.res_alpha_diff, GroupingResult):
                raise ConfigurationError(
                    "No letter grouping stored; run cal_diff(method='anova') without anova_set first"
                )
            try:
                letters = self.res_alpha_diff.letters_for(measure)
            except KeyError as e:
                raise ConfigurationError(str(e)) from e

        return build_alpha_plot_data(
            self.alpha_data,
            measure=measure,
            group=group,
            letters=letters,
            use_boxplot=use_boxplot,
            order_x_mean=order_x_mean,
            pair_compare=pair_compare,
            pair_compare_filter=pair_compare_filter,
            pair_compare_method=pair_compare_method,
        )

    def __repr__(self) -> str:
        lines = [
            "DiversityDifferenceEngine:",
            f"alpha_data have {self.alpha_data.shape[1]} columns: "
            f"{', '.join(map(str, self.alpha_data.columns))}",
        ]
        if self.alpha_stat is not None:
            lines.append(
                f"alpha_stat have {self.alpha_stat.shape[1]} columns: "
                f"{', '.join(map(str, self.alpha_stat.columns))}"
            )
        return "\n".join(lines)
