# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

# Third-Party Imports
import pandas as pd

# ================================= ALPHA DIVERSITY ================================== #

@dataclass(frozen=True)
class MeasurementRecord:
    """One (sample, measure) value of the long-format alpha diversity table."""
    sample_id: str
    measure_name: str
    value: float
    group_label: Optional[Any] = None
    other_sample_attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PairwiseComparisonResult:
    group_set: Tuple[Any, ...]
    measure_name: str
    test_kind: str
    p_value: float
    significance_tier: str

    @property
    def comparison(self) -> str:
        return " vs ".join(str(g) for g in self.group_set)


@dataclass(frozen=True)
class PostHocGrouping:
    """Letters assigned to each group label for one measure.

    `letters` is ordered by descending group mean, as produced by the
    post-hoc procedure.
    """
    measure_name: str
    letters: Dict[Any, str]
    means: Dict[Any, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ComparisonTableResult:
    comparisons: Tuple[PairwiseComparisonResult, ...]
    method: str = "KW"

    def to_frame(self) -> pd.DataFrame:
        columns = [
            'group_set', 'comparison', 'measure_name', 'test_kind', 'p_value',
            'significance_tier'
        ]
        rows = [
            {**asdict(c), 'comparison': c.comparison} for c in self.comparisons
        ]
        return pd.DataFrame(rows, columns=columns)


@dataclass(frozen=True)
class GroupingResult:
    groupings: Tuple[PostHocGrouping, ...]
    method: str = "anova"

    @property
    def measures(self) -> List[str]:
        return [g.measure_name for g in self.groupings]

    def to_frame(self) -> pd.DataFrame:
        """Letters outer-joined on group label, one column per measure."""
        table = None
        for grouping in self.groupings:
            column = pd.Series(grouping.letters, name=grouping.measure_name, dtype=object)
            column.index.name = 'name'
            if table is None:
                table = column.to_frame()
            else:
                table = table.join(column, how='outer', sort=False)
        if table is None:
            return pd.DataFrame()
        # join(how='outer') sorts on some pandas versions; restore first-seen order
        order = list(dict.fromkeys(
            label for grouping in self.groupings for label in grouping.letters
        ))
        return table.reindex(order)

    def letters_for(self, measure: str) -> pd.Series:
        frame = self.to_frame()
        if measure not in frame.columns:
            raise KeyError(f"No letter grouping for measure '{measure}'")
        return frame[measure]


@dataclass(frozen=True)
class RawSummaryResult:
    """Per-measure ANOVA tables fitted against a custom design."""
    summaries: Dict[str, pd.DataFrame]
    design: str
    method: str = "anova"

    def to_frame(self) -> pd.DataFrame:
        return pd.concat(self.summaries, names=['measure_name', 'term'])


AlphaDiffResult = Union[ComparisonTableResult, GroupingResult, RawSummaryResult]

# =============================== ENVIRONMENTAL FACTORS ============================== #

@dataclass(frozen=True)
class AssociationRecord:
    partition_label: Any
    feature_name: str
    variable_name: str
    correlation: float
    raw_p_value: float
    adjusted_p_value: float
    significance_tier: str


@dataclass(frozen=True)
class CorrelationResult:
    records: Tuple[AssociationRecord, ...]
    cor_method: str
    p_adjust_method: str
    adjust_partition: str

    def to_frame(self) -> pd.DataFrame:
        columns = [
            'partition_label', 'feature_name', 'variable_name', 'correlation',
            'raw_p_value', 'adjusted_p_value', 'significance_tier'
        ]
        frame = pd.DataFrame([asdict(r) for r in self.records], columns=columns)
        frame['variable_name'] = pd.Categorical(
            frame['variable_name'],
            categories=list(dict.fromkeys(frame['variable_name']))
        )
        return frame


@dataclass(frozen=True)
class MantelRecord:
    variable_name: str
    method: str
    statistic: float
    p_value: float
    significance_tier: str


@dataclass(frozen=True)
class MantelResult:
    records: Tuple[MantelRecord, ...]
    partial: bool = False

    @property
    def key(self) -> str:
        return "mantel_partial" if self.partial else "mantel"

    def to_frame(self) -> pd.DataFrame:
        columns = ['variable_name', 'method', 'statistic', 'p_value', 'significance_tier']
        return pd.DataFrame([asdict(r) for r in self.records], columns=columns)


@dataclass
class RdaResult:
    """Fitted (distance-based) redundancy analysis and its permutation tests."""
    use_dbrda: bool
    taxa_level: Optional[str]
    env_data: pd.DataFrame
    eigenvalues: pd.Series
    site_scores: pd.DataFrame
    biplot_scores: pd.DataFrame
    species_scores: Optional[pd.DataFrame]
    total_inertia: float
    r2: float
    r2_adjusted: float
    anova_terms: pd.DataFrame
    anova_axis: pd.DataFrame
    selected_variables: List[str] = field(default_factory=list)

    @property
    def proportion_explained(self) -> pd.Series:
        return self.eigenvalues / self.eigenvalues.sum()
