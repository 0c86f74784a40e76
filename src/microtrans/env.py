# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import re
from contextlib import nullcontext
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist

# Local Imports
from microtrans import constants
from microtrans.config import get_section
from microtrans.exceptions import (
    ConfigurationError, DataShapeError, MissingDistanceMatrixError,
    MissingSelectionError, StatTestFailure, UnknownFeatureSetError
)
from microtrans.figures.env import (
    HeatmapData, RdaPlotData, ScatterFitData, build_heatmap_data,
    build_rda_plot_data, build_scatterfit_data
)
from microtrans.logger import _format_task_desc, get_progress_bar
from microtrans.models import (
    AssociationRecord, CorrelationResult, MantelRecord, MantelResult, RdaResult
)
from microtrans.stats.mantel import as_square, env_distance, mantel_test, partial_mantel_test
from microtrans.stats.multitest import (
    adjust_within_partitions, resolve_adjust_method, significance_tier
)
from microtrans.stats.ordination import envfit, fit_rda, forward_selection, pcoa
from microtrans.stats.tests import correlation_test
from microtrans.stats.utils import (
    character_to_numeric, complete_missing, condense, drop_unresolved, merge_taxa,
    orient_samples_as_rows, restrict_dataset, shared_samples, strip_taxa_prefix
)

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# p_adjust_type values and the result column whose values form each adjustment family
P_ADJUST_PARTITIONS = {
    'partition': 'partition_label',
    'type': 'partition_label',
    'feature': 'feature_name',
    'taxa': 'feature_name',
    'variable': 'variable_name',
    'env': 'variable_name',
}
CORRELATION_COLUMNS = [
    'partition_label', 'feature_name', 'variable_name', 'correlation', 'raw_p_value'
]

# ==================================== CLASSES ======================================= #

class EnvironmentCorrelationEngine:
    """Effects of environmental variables on a community.

    Redundancy analysis, Mantel tests and feature × variable correlations
    with multiple-testing correction.

    Args:
        dataset:           Object exposing `sample_table` and, depending on the
                           analysis, `otu_table` + `tax_table` (features ×
                           samples), `taxa_abund` (level -> features × samples)
                           and `beta_diversity` (name -> square distance frame).
        env_cols:          Sample table columns holding the environmental data.
        add_data:          Environmental table (samples × variables); takes
                           precedence over `env_cols`.
        character2numeric: Turn text and categorical variables into numbers.
        complete_na:       Impute missing environmental values.
        config:            Loaded configuration; the `env` section supplies
                           defaults for permutations, random_state,
                           cor_method, p_adjust_method and p_adjust_type.
    """
    def __init__(
        self,
        dataset: Any = None,
        env_cols: Union[str, int, Sequence[Union[str, int]], None] = None,
        add_data: Optional[pd.DataFrame] = None,
        character2numeric: bool = True,
        complete_na: bool = False,
        config: Optional[Dict] = None
    ):
        settings = get_section(config, 'env')
        self.permutations = settings.get('permutations', constants.DEFAULT_PERMUTATIONS)
        self.random_state = settings.get('random_state', constants.DEFAULT_RANDOM_STATE)
        self.default_cor_method = settings.get('cor_method', constants.DEFAULT_COR_METHOD)
        self.default_p_adjust_method = settings.get('p_adjust_method', constants.DEFAULT_P_ADJUST_METHOD)
        self.default_p_adjust_type = settings.get('p_adjust_type', constants.DEFAULT_P_ADJUST_TYPE)
        self.default_taxa_level = settings.get('taxa_level', constants.DEFAULT_TAXA_LEVEL)

        sample_table = getattr(dataset, 'sample_table', None)
        if add_data is None:
            if env_cols is None:
                raise ConfigurationError("Please select env_cols or add_data!")
            if sample_table is None:
                raise ConfigurationError("env_cols needs a dataset with a sample_table")
            env_data = self._columns(sample_table, env_cols)
        else:
            env_data = add_data.copy()

        if sample_table is not None:
            shared = shared_samples(sample_table.index, env_data.index)
            dropped = len(sample_table) - len(shared)
            if dropped:
                logger.warning(f"{dropped} samples not found in env_data and removed!")
                dataset = restrict_dataset(dataset, shared)
            env_data = env_data.loc[shared]

        if complete_na:
            env_data = complete_missing(env_data, random_state=self.random_state)
        if character2numeric:
            env_data = character_to_numeric(env_data)

        self.env_data: pd.DataFrame = env_data
        self.dataset = dataset
        self.results: Dict[str, Any] = {}
        self.res_rda: Optional[RdaResult] = None
        self.res_rda_envsquare: Optional[pd.DataFrame] = None
        self.res_rda_trans: Optional[RdaPlotData] = None
        self.res_mantel: Optional[MantelResult] = None
        self.res_mantel_partial: Optional[MantelResult] = None
        self.res_cor: Optional[CorrelationResult] = None
        self.use_dbrda: Optional[bool] = None
        self.taxa_level: Optional[str] = None
        self.cor_method: Optional[str] = None

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def _columns(table: pd.DataFrame, selection) -> pd.DataFrame:
        """Columns of `table` by name or 0-based position."""
        if isinstance(selection, (str, int, np.integer)):
            selection = [selection]
        selection = list(selection)
        if all(isinstance(s, (int, np.integer)) for s in selection):
            if any(s >= table.shape[1] or s < -table.shape[1] for s in selection):
                raise ConfigurationError(f"Column positions {selection} out of range")
            return table.iloc[:, selection].copy()
        missing = [s for s in selection if s not in table.columns]
        if missing:
            raise ConfigurationError(f"Columns not found: {missing}")
        return table.loc[:, selection].copy()

    def _select_env(self, select_env_data=None) -> pd.DataFrame:
        if select_env_data is not None:
            return self._columns(self.env_data, select_env_data)
        numeric = self.env_data.select_dtypes(include='number')
        if numeric.shape[1] == 0:
            raise ConfigurationError("No numeric environmental variables available")
        skipped = [c for c in self.env_data.columns if c not in numeric.columns]
        if skipped:
            logger.debug(f"Non-numeric environmental variables skipped: {skipped}")
        return numeric

    @property
    def sample_table(self) -> Optional[pd.DataFrame]:
        return getattr(self.dataset, 'sample_table', None)

    def _distance_matrix(
        self,
        add_matrix: Union[pd.DataFrame, np.ndarray, None],
        use_measure: Optional[str],
        samples: Sequence[Any]
    ) -> pd.DataFrame:
        """Community distance matrix restricted to and ordered by `samples`."""
        if add_matrix is not None:
            if isinstance(add_matrix, pd.DataFrame):
                matrix = add_matrix
            else:
                array = np.asarray(add_matrix, dtype=float)
                if array.shape != (len(samples), len(samples)):
                    raise DataShapeError(
                        f"add_matrix of shape {array.shape} does not match "
                        f"{len(samples)} environmental samples"
                    )
                matrix = pd.DataFrame(array, index=samples, columns=samples)
        else:
            beta_diversity = getattr(self.dataset, 'beta_diversity', None)
            if not beta_diversity:
                raise MissingDistanceMatrixError(
                    "No distance matrix provided; please use the add_matrix parameter "
                    "or provide a dataset with beta_diversity"
                )
            if use_measure is None:
                use_measure = next(iter(beta_diversity))
            elif use_measure not in beta_diversity:
                raise ConfigurationError(
                    f"Distance '{use_measure}' not in beta_diversity: {list(beta_diversity)}"
                )
            matrix = beta_diversity[use_measure]
            logger.debug(f"Using the '{use_measure}' distance matrix")
        return pd.DataFrame(
            as_square(matrix, samples), index=list(samples), columns=list(samples)
        )

    def _merged_abundance(self, taxa_level: str) -> pd.DataFrame:
        """Features × samples abundance table at one taxonomic level."""
        taxa_abund = getattr(self.dataset, 'taxa_abund', None) or {}
        if taxa_level in taxa_abund:
            return taxa_abund[taxa_level]
        otu_table = getattr(self.dataset, 'otu_table', None)
        tax_table = getattr(self.dataset, 'tax_table', None)
        if otu_table is None or tax_table is None:
            raise ConfigurationError(
                f"No '{taxa_level}' table in taxa_abund and no otu_table/tax_table to merge"
            )
        return merge_taxa(otu_table, tax_table, taxa_level)

    def _feature_table(
        self,
        use_data: str,
        use_taxa_num: Optional[int],
        other_taxa: Optional[Sequence[str]]
    ) -> pd.DataFrame:
        """Samples × features table chosen by a symbolic name."""
        if self.dataset is None:
            raise ConfigurationError("No dataset provided; use add_abund_table instead")
        taxa_abund = getattr(self.dataset, 'taxa_abund', None) or {}
        if use_data in taxa_abund:
            table = taxa_abund[use_data]
        elif re.search("all|other", use_data, flags=re.IGNORECASE):
            if not taxa_abund:
                raise ConfigurationError("The dataset has no taxa_abund tables to stack")
            table = pd.concat(list(taxa_abund.values()))
            if use_data.lower() == "other":
                if other_taxa is None:
                    raise ConfigurationError("You select other, but no other_taxa provided!")
                missing = [t for t in other_taxa if t not in table.index]
                if missing:
                    logger.warning(f"{len(missing)} of other_taxa not found, e.g. {missing[:3]}")
                table = table.loc[[t for t in other_taxa if t in table.index]]
        else:
            raise UnknownFeatureSetError(
                f"Unknown use_data parameter '{use_data}'; expected a taxa_abund level "
                f"{list(taxa_abund)}, 'all' or 'other'"
            )
        table = drop_unresolved(table)
        if use_data in taxa_abund and use_taxa_num is not None:
            table = table.iloc[:use_taxa_num]
        return table.T

    def _progress(self, verbose: bool):
        return get_progress_bar() if verbose else nullcontext()

    # --------------------------------------------------------------- ordination

    def cal_rda(
        self,
        use_dbrda: bool = True,
        add_matrix: Union[pd.DataFrame, np.ndarray, None] = None,
        use_measure: Optional[str] = None,
        feature_sel: bool = False,
        taxa_level: Optional[str] = None,
        taxa_filter_thres: Optional[float] = None,
        verbose: bool = False
    ) -> RdaResult:
        """Redundancy analysis (RDA) or distance-based RDA.

        Args:
            use_dbrda:         db-RDA on a distance matrix (True) or RDA on
                               taxa abundances (False).
            add_matrix:        Distance matrix to use instead of the dataset's.
            use_measure:       Name of the beta diversity matrix; the first
                               one by default.
            feature_sel:       Forward selection of environmental variables.
            taxa_level:        Taxonomic level of the RDA abundances.
            taxa_filter_thres: Keep taxa whose relative abundance exceeds it.
            verbose:           Show progress bars for the permutation tests.
        """
        env_data = self._select_env()
        samples = list(env_data.index)
        if use_dbrda:
            matrix = self._distance_matrix(add_matrix, use_measure, samples)
            response = pcoa(matrix)
            taxa_level = None
        else:
            if self.dataset is None:
                raise ConfigurationError(
                    "No abundance dataset provided; please set dataset when creating the engine"
                )
            if taxa_level is None:
                taxa_level = self.default_taxa_level
                logger.info(f"No taxa_level provided, use {taxa_level} level automatically !")
            abundance = self._merged_abundance(taxa_level)
            if taxa_filter_thres is not None:
                relative = abundance.sum(axis=1) / abundance.to_numpy(dtype=float).sum()
                abundance = abundance.loc[relative > taxa_filter_thres]
            response = orient_samples_as_rows(abundance, samples)
            response = response.loc[shared_samples(samples, response.index)]
            env_data = env_data.loc[response.index]

        if feature_sel:
            logger.info("Start forward selection ...")
            selected = forward_selection(
                response, env_data, self.permutations, self.random_state
            )
            if not selected:
                raise StatTestFailure(
                    "Non variables obtained after selection according to model. Check method and data!"
                )
            logger.info(f"Selected variables: {', '.join(map(str, selected))}")
            env_data = env_data[selected]

        rda = fit_rda(
            response, env_data,
            use_dbrda=use_dbrda,
            taxa_level=taxa_level,
            permutations=self.permutations,
            random_state=self.random_state,
            verbose=verbose
        )
        self.use_dbrda = use_dbrda
        self.taxa_level = taxa_level
        self.res_rda = rda
        self.results['rda'] = rda
        logger.info("The rda total result is stored in object.res_rda ...")
        logger.info(f"The R2 is stored in object.res_rda.r2 ({rda.r2:.4f}, adjusted {rda.r2_adjusted:.4f}) ...")
        logger.info("The terms anova result is stored in object.res_rda.anova_terms ...")
        logger.info("The axis anova result is stored in object.res_rda.anova_axis ...")
        return rda

    def _require_rda(self) -> RdaResult:
        if self.res_rda is None:
            raise ConfigurationError("Please first use cal_rda function to calculate RDA !")
        return self.res_rda

    def cal_rda_envsquare(self, n_permutations: Optional[int] = None) -> pd.DataFrame:
        """Fit each environmental vector onto the first two RDA axes.

        Returns:
            Table indexed by variable with the arrow direction on each axis,
            r2 and a permutation p_value.
        """
        rda = self._require_rda()
        env = self._select_env().loc[rda.site_scores.index]
        result = envfit(
            rda.site_scores.iloc[:, :2], env,
            permutations=self.permutations if n_permutations is None else n_permutations,
            random_state=self.random_state
        )
        self.res_rda_envsquare = result
        self.results['rda_envsquare'] = result
        logger.info("Result is stored in object.res_rda_envsquare ...")
        return result

    def trans_rda(
        self,
        show_taxa: int = 10,
        adjust_arrow_length: bool = False,
        min_perc_env: float = 1,
        max_perc_env: float = 100,
        min_perc_tax: float = 1,
        max_perc_tax: float = 100
    ) -> RdaPlotData:
        """Transform the RDA result for biplots."""
        rda = self._require_rda()
        plot_data = build_rda_plot_data(
            rda,
            sample_table=self.sample_table,
            show_taxa=show_taxa,
            adjust_arrow_length=adjust_arrow_length,
            min_perc_env=min_perc_env,
            max_perc_env=max_perc_env,
            min_perc_tax=min_perc_tax,
            max_perc_tax=max_perc_tax,
        )
        self.res_rda_trans = plot_data
        self.results['rda_trans'] = plot_data
        logger.info("The result list is stored in object.res_rda_trans ...")
        return plot_data

    # ------------------------------------------------------------------- mantel

    def cal_mantel(
        self,
        select_env_data=None,
        partial_mantel: bool = False,
        add_matrix: Union[pd.DataFrame, np.ndarray, None] = None,
        use_measure: Optional[str] = None,
        method: str = constants.DEFAULT_COR_METHOD,
        permutations: Optional[int] = None,
        verbose: bool = False
    ) -> MantelResult:
        """Mantel test between the community distances and each variable.

        Each variable is scaled and centred and turned into a Euclidean
        distance matrix. With `partial_mantel`, the distances of all other
        variables are the control matrix. A constant variable gets a missing
        statistic and p-value. Plain and partial results are stored
        separately (`res_mantel`, `res_mantel_partial`).
        """
        env = self._select_env(select_env_data)
        if partial_mantel and env.shape[1] < 2:
            raise ConfigurationError("Partial Mantel test needs at least 2 environmental variables")
        community = self._distance_matrix(add_matrix, use_measure, list(env.index)).to_numpy()
        permutations = self.permutations if permutations is None else permutations

        records = []
        with self._progress(verbose) as progress:
            if progress is not None:
                desc = "Partial Mantel tests" if partial_mantel else "Mantel tests"
                task_id = progress.add_task(_format_task_desc(desc), total=env.shape[1])
            for column in env.columns:
                env_dist = env_distance(env[[column]])
                if partial_mantel:
                    control = env_distance(env.drop(columns=column))
                    stat, p_val, _ = partial_mantel_test(
                        community, env_dist, control, method, permutations, self.random_state
                    )
                else:
                    stat, p_val, _ = mantel_test(
                        community, env_dist, method, permutations, self.random_state
                    )
                if np.isnan(stat):
                    logger.debug(f"Mantel statistic of '{column}' is undefined")
                records.append(MantelRecord(
                    variable_name=column,
                    method=method,
                    statistic=stat,
                    p_value=p_val,
                    significance_tier=significance_tier(p_val),
                ))
                if progress is not None:
                    progress.update(task_id, advance=1)

        result = MantelResult(records=tuple(records), partial=partial_mantel)
        if partial_mantel:
            self.res_mantel_partial = result
        else:
            self.res_mantel = result
        self.results[result.key] = result
        logger.info(f"The result is stored in object.res_{result.key} ...")
        return result

    # -------------------------------------------------------------- correlation

    def cal_cor(
        self,
        use_data: Optional[str] = None,
        select_env_data=None,
        cor_method: Optional[str] = None,
        p_adjust_method: Optional[str] = None,
        p_adjust_type: Optional[str] = None,
        add_abund_table: Optional[pd.DataFrame] = None,
        by_group: Optional[str] = None,
        use_taxa_num: Optional[int] = None,
        other_taxa: Optional[Sequence[str]] = None,
        group_use: Optional[str] = None,
        group_select: Any = None,
        taxa_name_full: bool = True,
        verbose: bool = False
    ) -> CorrelationResult:
        """Correlations between features and environmental variables.

        Every (partition, feature, variable) triple is tested on the samples
        of its partition. P-values are adjusted within each value of the
        column chosen by `p_adjust_type`; rows with a missing statistic are
        dropped afterwards.

        Args:
            use_data:        A taxa_abund level (Genus by default), 'all'
                             (levels stacked) or 'other' (stacked, restricted
                             to `other_taxa`).
            select_env_data: Environmental columns; numeric columns by default.
            cor_method:      'pearson', 'spearman' or 'kendall'.
            p_adjust_method: R or statsmodels adjustment method name.
            p_adjust_type:   Adjustment family: 'partition' ('Type'),
                             'feature' ('Taxa') or 'variable' ('Env').
            add_abund_table: Samples × features table to use instead.
            by_group:        Sample table column partitioning the samples.
            use_taxa_num:    Keep the first N taxa of a level table.
            other_taxa:      Taxa used with use_data='other'.
            group_use:       Sample table column used to filter samples ...
            group_select:    ... keeping the samples with this value (or values).
            taxa_name_full:  Keep full taxa names; otherwise the last level only.
            verbose:         Show a progress bar over the triples.
        """
        cor_method = (cor_method or self.default_cor_method).lower()
        if cor_method not in constants.COR_METHODS:
            raise ConfigurationError(
                f"Unknown cor_method '{cor_method}'; expected one of {constants.COR_METHODS}"
            )
        p_adjust_method = p_adjust_method or self.default_p_adjust_method
        resolve_adjust_method(p_adjust_method)
        p_adjust_type = p_adjust_type or self.default_p_adjust_type
        partition_column = P_ADJUST_PARTITIONS.get(str(p_adjust_type).lower())
        if partition_column is None:
            raise ConfigurationError(
                f"Unknown p_adjust_type '{p_adjust_type}'; expected one of {list(P_ADJUST_PARTITIONS)}"
            )

        env = self._select_env(select_env_data)
        if add_abund_table is not None:
            abund = orient_samples_as_rows(add_abund_table, env.index)
        else:
            abund = self._feature_table(use_data or self.default_taxa_level, use_taxa_num, other_taxa)

        if group_use is not None:
            if group_select is None:
                raise MissingSelectionError(
                    "You select group_use parameter, but no group_select parameter provided!"
                )
            sample_table = self.sample_table
            if sample_table is None or group_use not in sample_table.columns:
                raise ConfigurationError(f"group_use column '{group_use}' not found in the sample table")
            values = group_select if isinstance(group_select, (list, tuple, set)) else [group_select]
            keep = sample_table.index[sample_table[group_use].isin(values)]
            abund = abund.loc[abund.index.isin(keep)]

        samples = shared_samples(env.index, abund.index)
        env, abund = env.loc[samples], abund.loc[samples]
        if by_group is None:
            groups = pd.Series(constants.DEFAULT_PARTITION_LABEL, index=samples)
        else:
            sample_table = self.sample_table
            if sample_table is None or by_group not in sample_table.columns:
                raise ConfigurationError(f"by_group column '{by_group}' not found in the sample table")
            groups = sample_table.loc[samples, by_group]
            if groups.isna().any():
                logger.warning(
                    f"{int(groups.isna().sum())} samples without a {by_group} value removed!"
                )
                groups = groups.dropna()
                samples = list(groups.index)
                env, abund = env.loc[samples], abund.loc[samples]
            groups = groups.astype(str)
            logger.info(f"Calculate the corr by the groups in {by_group} of sample_table, respectively ...")

        frame = self._correlation_table(abund, env, groups, cor_method, verbose)
        frame['adjusted_p_value'] = adjust_within_partitions(
            frame, partition_column, 'raw_p_value', p_adjust_method
        )
        frame = frame.dropna(subset=['correlation', 'raw_p_value', 'adjusted_p_value'])
        dropped = len(groups.unique()) * abund.shape[1] * env.shape[1] - len(frame)
        if dropped:
            logger.debug(f"Dropped {dropped} incomplete correlation rows")
        if not taxa_name_full:
            frame['feature_name'] = strip_taxa_prefix(frame['feature_name'])

        records = tuple(
            AssociationRecord(
                partition_label=row.partition_label,
                feature_name=str(row.feature_name),
                variable_name=str(row.variable_name),
                correlation=float(row.correlation),
                raw_p_value=float(row.raw_p_value),
                adjusted_p_value=float(row.adjusted_p_value),
                significance_tier=significance_tier(row.adjusted_p_value),
            )
            for row in frame.itertuples(index=False)
        )
        result = CorrelationResult(
            records=records,
            cor_method=cor_method,
            p_adjust_method=p_adjust_method,
            adjust_partition=partition_column,
        )
        self.res_cor = result
        self.results['cor'] = result
        self.cor_method = cor_method
        logger.info("The correlation result is stored in object.res_cor ...")
        return result

    def _correlation_table(
        self,
        abund: pd.DataFrame,
        env: pd.DataFrame,
        groups: pd.Series,
        cor_method: str,
        verbose: bool
    ) -> pd.DataFrame:
        """Raw correlation of every (partition, feature, variable) triple."""
        partitions = list(pd.unique(groups))
        triples: List[Tuple[Any, Any, Any]] = [
            (partition, feature, variable)
            for variable in env.columns
            for feature in abund.columns
            for partition in partitions
        ]
        rows = []
        with self._progress(verbose) as progress:
            if progress is not None:
                task_id = progress.add_task(_format_task_desc("Correlations"), total=len(triples))
            for partition, feature, variable in triples:
                in_partition = (groups == partition).to_numpy()
                estimate, p_val = correlation_test(
                    abund.loc[in_partition, feature], env.loc[in_partition, variable], cor_method
                )
                rows.append((partition, feature, variable, estimate, p_val))
                if progress is not None:
                    progress.update(task_id, advance=1)
        return pd.DataFrame(rows, columns=CORRELATION_COLUMNS)

    # ----------------------------------------------------------------- plotting

    def cor_heatmap_data(
        self,
        filter_feature: Optional[Sequence[str]] = None,
        keep_full_name: bool = False,
        keep_prefix: bool = True,
        pheatmap: bool = False
    ) -> HeatmapData:
        """Heatmap matrices of the last correlation result."""
        if self.res_cor is None:
            raise ConfigurationError("Please first use cal_cor to get plot data !")
        return build_heatmap_data(
            self.res_cor.to_frame(),
            self.cor_method,
            filter_feature=filter_feature,
            keep_full_name=keep_full_name,
            keep_prefix=keep_prefix,
            pheatmap=pheatmap,
        )

    def _scatter_axis(self, value: Any, name: str) -> Tuple[np.ndarray, bool]:
        """Vector or square matrix behind one axis of a scatter plot."""
        if isinstance(value, (str, int, np.integer)):
            return self._columns(self.env_data, value).iloc[:, 0].to_numpy(dtype=float), False
        if isinstance(value, pd.DataFrame) or (isinstance(value, np.ndarray) and value.ndim == 2):
            matrix = np.asarray(value, dtype=float)
            if matrix.shape[0] != matrix.shape[1]:
                raise DataShapeError(f"The input {name} matrix must be square, got {matrix.shape}")
            return matrix, True
        if isinstance(value, (pd.Series, list, tuple, np.ndarray)):
            vector = pd.to_numeric(pd.Series(np.asarray(value).ravel()), errors='coerce')
            return vector.to_numpy(dtype=float), False
        raise DataShapeError(f"The input {name} is neither a vector nor a matrix !")

    def scatterfit_data(
        self,
        x: Any,
        y: Any,
        use_cor: bool = True,
        cor_method: str = constants.DEFAULT_COR_METHOD,
        text_x_pos: Optional[float] = None,
        text_y_pos: Optional[float] = None,
        pvalue_trim: int = 4,
        cor_coef_trim: int = 3,
        lm_fir_trim: int = 2,
        lm_sec_trim: int = 2,
        lm_squ_trim: int = 2
    ) -> ScatterFitData:
        """Scatter plot data with a correlation test or a fitted line.

        `x` and `y` may be environmental column names or positions, vectors
        or square distance matrices. When one side is a matrix, the other
        becomes a Euclidean distance vector and both are condensed.
        """
        xv, x_matrix = self._scatter_axis(x, 'x')
        yv, y_matrix = self._scatter_axis(y, 'y')
        if x_matrix and y_matrix:
            xv, yv = condense(xv), condense(yv)
        elif x_matrix:
            xv, yv = condense(xv), pdist(yv.reshape(-1, 1), metric='euclidean')
        elif y_matrix:
            xv, yv = pdist(xv.reshape(-1, 1), metric='euclidean'), condense(yv)
        if len(xv) != len(yv):
            raise DataShapeError(
                "The length of x axis vector is not equal to the length of y axis vector!"
            )
        return build_scatterfit_data(
            xv, yv,
            use_cor=use_cor,
            cor_method=cor_method,
            text_x_pos=text_x_pos,
            text_y_pos=text_y_pos,
            pvalue_trim=pvalue_trim,
            cor_coef_trim=cor_coef_trim,
            lm_fir_trim=lm_fir_trim,
            lm_sec_trim=lm_sec_trim,
            lm_squ_trim=lm_squ_trim,
        )

    def __repr__(self) -> str:
        return (
            "EnvironmentCorrelationEngine:\n"
            f"Env table have {self.env_data.shape[1]} variables: "
            f"{','.join(map(str, self.env_data.columns))}"
        )
