"""
Tests for the environmental association engine.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from types import SimpleNamespace

# Third-Party Imports
import numpy as np
import pandas as pd
import pytest

# Local Imports
from microtrans.env import EnvironmentCorrelationEngine
from microtrans.exceptions import (
    ConfigurationError, DataShapeError, MissingDistanceMatrixError,
    MissingSelectionError, NoOverlapError, StatTestFailure, UnknownFeatureSetError
)
from microtrans.models import CorrelationResult, MantelResult, RdaResult
from microtrans.stats.multitest import p_adjust

# ==================================== FIXTURES ====================================== #

@pytest.fixture
def engine(env_dataset, env_columns, fast_config):
    return EnvironmentCorrelationEngine(env_dataset, env_cols=env_columns, config=fast_config)


@pytest.fixture
def two_features(env_dataset, rng):
    samples = env_dataset.sample_table.index
    ph = env_dataset.sample_table['pH'].to_numpy()
    return pd.DataFrame({
        'Bacillus': ph * 2 + rng.normal(0, 0.5, len(samples)),
        'Pseudomonas': rng.normal(5, 1, len(samples)),
    }, index=samples)

# ================================== CONSTRUCTION ==================================== #

def test_env_cols_or_add_data_required(env_dataset):
    with pytest.raises(ConfigurationError):
        EnvironmentCorrelationEngine(env_dataset)


def test_text_variables_become_codes(engine):
    assert sorted(engine.env_data['Soil'].unique()) == [1.0, 2.0]
    assert list(engine.env_data.columns) == ['pH', 'Temp', 'Moisture', 'Soil']


def test_env_cols_by_position(env_dataset, fast_config):
    engine = EnvironmentCorrelationEngine(env_dataset, env_cols=[0, 1], config=fast_config)
    assert list(engine.env_data.columns) == ['pH', 'Temp']


def test_partial_overlap_restricts_dataset(env_dataset, fast_config, caplog):
    add_data = env_dataset.sample_table[['pH', 'Temp']].iloc[:8]
    with caplog.at_level(logging.WARNING, logger="microtrans"):
        engine = EnvironmentCorrelationEngine(env_dataset, add_data=add_data, config=fast_config)
    assert "2 samples not found" in caplog.text
    assert len(engine.dataset.sample_table) == 8
    assert engine.dataset.beta_diversity['bray'].shape == (8, 8)
    assert engine.dataset.otu_table.shape[1] == 8
    assert engine.dataset.taxa_abund['Genus'].shape[1] == 8
    assert len(env_dataset.sample_table) == 10


def test_no_overlap(env_dataset):
    add_data = env_dataset.sample_table[['pH']].rename(index=lambda s: f"X{s}")
    with pytest.raises(NoOverlapError):
        EnvironmentCorrelationEngine(env_dataset, add_data=add_data)


def test_add_data_wins_over_env_cols(env_dataset, fast_config):
    engine = EnvironmentCorrelationEngine(
        env_dataset, env_cols=['Temp'], add_data=env_dataset.sample_table[['pH']],
        config=fast_config
    )
    assert list(engine.env_data.columns) == ['pH']


def test_complete_na_fills_missing_values(env_dataset, fast_config):
    add_data = env_dataset.sample_table[['pH', 'Temp', 'Moisture']].copy()
    add_data.iloc[3, 0] = np.nan
    engine = EnvironmentCorrelationEngine(
        env_dataset, add_data=add_data, complete_na=True, config=fast_config
    )
    assert not engine.env_data.isna().any().any()


def test_repr_lists_variables(engine):
    assert repr(engine).endswith("Env table have 4 variables: pH,Temp,Moisture,Soil")

# ==================================== CORRELATION =================================== #

def test_two_features_three_variables_gives_six_records(engine, two_features):
    result = engine.cal_cor(
        add_abund_table=two_features, select_env_data=['pH', 'Temp', 'Moisture']
    )
    assert isinstance(result, CorrelationResult)
    assert len(result.records) == 6
    assert result.adjust_partition == 'variable_name'
    frame = result.to_frame()
    assert frame.groupby('variable_name', observed=True).size().tolist() == [2, 2, 2]
    assert set(frame['partition_label']) == {'All'}
    assert engine.res_cor is result
    assert engine.results['cor'] is result


def test_adjustment_matches_per_partition_adjustment(engine, two_features):
    frame = engine.cal_cor(
        add_abund_table=two_features, select_env_data=['pH', 'Temp', 'Moisture']
    ).to_frame()
    for _, rows in frame.groupby('variable_name', observed=True):
        assert np.allclose(rows['adjusted_p_value'], p_adjust(rows['raw_p_value'], 'fdr'))


def test_adjustment_is_local_to_its_partition(engine, two_features):
    full = engine.cal_cor(
        add_abund_table=two_features, select_env_data=['pH', 'Temp', 'Moisture']
    ).to_frame()
    alone = engine.cal_cor(add_abund_table=two_features, select_env_data=['pH']).to_frame()
    ph_rows = full.loc[full['variable_name'] == 'pH']
    assert np.allclose(ph_rows['adjusted_p_value'], alone['adjusted_p_value'])


@pytest.mark.parametrize("p_adjust_type, column", [
    ("Env", 'variable_name'),
    ("Taxa", 'feature_name'),
    ("Type", 'partition_label'),
    ("feature", 'feature_name'),
])
def test_adjustment_partition_aliases(engine, two_features, p_adjust_type, column):
    result = engine.cal_cor(add_abund_table=two_features, p_adjust_type=p_adjust_type)
    assert result.adjust_partition == column


def test_unknown_adjustment_settings(engine, two_features):
    with pytest.raises(ConfigurationError):
        engine.cal_cor(add_abund_table=two_features, p_adjust_type="Sample")
    with pytest.raises(ConfigurationError):
        engine.cal_cor(add_abund_table=two_features, p_adjust_method="magic")
    with pytest.raises(ConfigurationError):
        engine.cal_cor(add_abund_table=two_features, cor_method="cosine")


def test_significance_uses_adjusted_p_value(engine, two_features):
    for record in engine.cal_cor(add_abund_table=two_features).records:
        p = record.adjusted_p_value
        expected = "***" if p < 0.001 else "**" if p < 0.01 else "*" if p < 0.05 else ""
        assert record.significance_tier == expected


def test_partitions_by_group(engine, two_features):
    result = engine.cal_cor(
        add_abund_table=two_features, select_env_data=['pH', 'Temp', 'Moisture'],
        by_group='Region', p_adjust_type='Type'
    )
    frame = result.to_frame()
    assert len(frame) == 12
    assert set(frame['partition_label']) == {'G1', 'G2'}
    assert frame.groupby('partition_label').size().tolist() == [6, 6]


def test_degenerate_rows_are_dropped(engine, two_features):
    features = two_features.assign(Constant=1.0)
    result = engine.cal_cor(add_abund_table=features, select_env_data=['pH', 'Temp'])
    assert len(result.records) == 4
    assert 'Constant' not in {r.feature_name for r in result.records}


def test_features_as_rows_table_is_accepted(engine, two_features):
    by_sample = engine.cal_cor(add_abund_table=two_features).to_frame()
    by_feature = engine.cal_cor(add_abund_table=two_features.T).to_frame()
    pd.testing.assert_frame_equal(by_sample, by_feature)


def test_samples_without_a_group_are_left_out(env_dataset, env_columns, fast_config, two_features, caplog):
    sample_table = env_dataset.sample_table.copy()
    sample_table.loc['S00', 'Region'] = None
    dataset = SimpleNamespace(sample_table=sample_table)
    engine = EnvironmentCorrelationEngine(dataset, env_cols=env_columns, config=fast_config)
    with caplog.at_level(logging.WARNING, logger="microtrans"):
        frame = engine.cal_cor(
            add_abund_table=two_features, select_env_data=['pH'], by_group='Region'
        ).to_frame()
    assert set(frame['partition_label']) == {'G1', 'G2'}
    assert "1 samples without a Region value removed" in caplog.text


def test_taxa_level_table_drops_unresolved_names(engine):
    frame = engine.cal_cor(use_data='Genus').to_frame()
    names = set(frame['feature_name'])
    assert len(names) == 5
    assert not any(name.endswith("__") for name in names)
    assert engine.cal_cor(use_data='Genus', use_taxa_num=2).to_frame()['feature_name'].nunique() == 2


def test_short_taxa_names(engine):
    names = set(engine.cal_cor(use_data='Genus', taxa_name_full=False).to_frame()['feature_name'])
    assert 'Bacillus' in names


def test_all_levels_and_other_taxa(engine, env_dataset):
    assert engine.cal_cor(use_data='all').to_frame()['feature_name'].nunique() == 8

    other = list(env_dataset.taxa_abund['Genus'].index[:2])
    frame = engine.cal_cor(use_data='other', other_taxa=other).to_frame()
    assert set(frame['feature_name']) == set(other)
    with pytest.raises(ConfigurationError):
        engine.cal_cor(use_data='other')


def test_unknown_feature_set(engine):
    with pytest.raises(UnknownFeatureSetError):
        engine.cal_cor(use_data='Family')


def test_group_filter(engine, two_features):
    with pytest.raises(MissingSelectionError):
        engine.cal_cor(add_abund_table=two_features, group_use='Region')
    frame = engine.cal_cor(
        add_abund_table=two_features, group_use='Region', group_select='G1',
        select_env_data=['pH']
    ).to_frame()
    assert len(frame) == 2


def test_feature_table_without_shared_samples(engine, two_features):
    with pytest.raises(NoOverlapError):
        engine.cal_cor(add_abund_table=two_features.rename(index=lambda s: f"X{s}"))


def test_failed_call_keeps_previous_result(engine, two_features):
    first = engine.cal_cor(add_abund_table=two_features)
    with pytest.raises(UnknownFeatureSetError):
        engine.cal_cor(use_data='Family')
    assert engine.res_cor is first

# ====================================== HEATMAP ===================================== #

def test_heatmap_needs_correlations(engine):
    with pytest.raises(ConfigurationError):
        engine.cor_heatmap_data()


def test_heatmap_single_partition(engine):
    engine.cal_cor(use_data='Genus')
    heatmap = engine.cor_heatmap_data()
    assert heatmap.correlation.shape == (5, 4)
    assert heatmap.significance.shape == (5, 4)
    assert set(heatmap.correlation.columns) == {'pH', 'Temp', 'Moisture', 'Soil'}
    assert not heatmap.faceted
    assert all("|" not in name for name in heatmap.row_order)


def test_heatmap_multiple_partitions(engine):
    engine.cal_cor(use_data='Genus', by_group='Region')
    assert engine.cor_heatmap_data().faceted

    clustered = engine.cor_heatmap_data(pheatmap=True)
    assert clustered.clustered
    assert "G1: pH" in clustered.correlation.columns

# ======================================= MANTEL ===================================== #

def test_plain_and_partial_mantel_are_stored_separately(engine):
    plain = engine.cal_mantel()
    partial = engine.cal_mantel(partial_mantel=True)

    assert isinstance(plain, MantelResult) and not plain.partial
    assert partial.partial
    assert engine.res_mantel is plain
    assert engine.res_mantel_partial is partial
    assert engine.results['mantel'] is plain
    assert engine.results['mantel_partial'] is partial
    assert plain.to_frame()['variable_name'].tolist() == ['pH', 'Temp', 'Moisture', 'Soil']


def test_mantel_detects_the_gradient(engine):
    records = {r.variable_name: r for r in engine.cal_mantel(select_env_data=['pH', 'Temp']).records}
    assert records['pH'].statistic > 0.3
    assert records['pH'].p_value <= 0.05
    assert records['pH'].significance_tier in {"*", "**", "***"}


def test_constant_variable_keeps_the_other_mantel_results(env_dataset, fast_config):
    add_data = env_dataset.sample_table[['pH', 'Temp']].assign(Depth=5.0)
    engine = EnvironmentCorrelationEngine(env_dataset, add_data=add_data, config=fast_config)
    for partial in (False, True):
        records = {r.variable_name: r for r in engine.cal_mantel(partial_mantel=partial).records}
        assert list(records) == ['pH', 'Temp', 'Depth']
        assert np.isnan(records['Depth'].statistic)
        assert np.isnan(records['Depth'].p_value)
        assert records['Depth'].significance_tier == ""
        assert np.isfinite(records['pH'].statistic)
    assert engine.res_mantel is not None and engine.res_mantel_partial is not None


def test_mantel_without_distance_matrix(env_dataset, env_columns):
    dataset = SimpleNamespace(sample_table=env_dataset.sample_table)
    engine = EnvironmentCorrelationEngine(dataset, env_cols=env_columns)
    with pytest.raises(MissingDistanceMatrixError):
        engine.cal_mantel()
    with pytest.raises(MissingDistanceMatrixError):
        engine.cal_rda()


def test_mantel_with_external_matrix(env_dataset, env_columns, fast_config):
    dataset = SimpleNamespace(sample_table=env_dataset.sample_table)
    engine = EnvironmentCorrelationEngine(dataset, env_cols=env_columns, config=fast_config)
    matrix = env_dataset.beta_diversity['bray']
    result = engine.cal_mantel(add_matrix=matrix.to_numpy(), method='spearman')
    assert len(result.records) == 4
    assert {r.method for r in result.records} == {'spearman'}
    with pytest.raises(DataShapeError):
        engine.cal_mantel(add_matrix=np.zeros((3, 3)))


def test_mantel_argument_checks(engine):
    with pytest.raises(ConfigurationError):
        engine.cal_mantel(use_measure='jaccard')
    with pytest.raises(ConfigurationError):
        engine.cal_mantel(select_env_data=['pH'], partial_mantel=True)

# ========================================= RDA ====================================== #

def test_dbrda(engine):
    rda = engine.cal_rda()
    assert isinstance(rda, RdaResult)
    assert rda.use_dbrda and rda.species_scores is None
    assert 0 <= rda.r2 <= 1
    assert (rda.eigenvalues > 0).all()
    assert rda.site_scores.shape == (10, len(rda.eigenvalues))
    assert list(rda.biplot_scores.index) == ['pH', 'Temp', 'Moisture', 'Soil']
    assert list(rda.anova_terms.index) == ['pH', 'Temp', 'Moisture', 'Soil', 'Residual']
    assert rda.anova_axis.index[-1] == 'Residual'
    assert engine.res_rda is rda
    assert engine.results['rda'] is rda


def test_rda_defaults_to_genus(engine, caplog):
    with caplog.at_level(logging.INFO, logger="microtrans"):
        rda = engine.cal_rda(use_dbrda=False)
    assert "use Genus level automatically" in caplog.text
    assert rda.taxa_level == 'Genus'
    assert rda.species_scores.shape[0] == 6
    assert 0 <= rda.r2 <= 1


def test_rda_merges_otu_table(env_dataset, env_columns, fast_config):
    dataset = SimpleNamespace(
        sample_table=env_dataset.sample_table,
        otu_table=env_dataset.otu_table,
        tax_table=env_dataset.tax_table,
    )
    engine = EnvironmentCorrelationEngine(dataset, env_cols=env_columns, config=fast_config)
    rda = engine.cal_rda(use_dbrda=False, taxa_level='Phylum')
    assert sorted(rda.species_scores.index) == [
        'p__Actinobacteria', 'p__Firmicutes', 'p__Proteobacteria'
    ]


def test_rda_taxa_filter(engine, env_dataset):
    genus = env_dataset.taxa_abund['Genus']
    relative = genus.sum(axis=1) / genus.to_numpy().sum()
    threshold = relative.median()
    rda = engine.cal_rda(use_dbrda=False, taxa_filter_thres=threshold)
    assert rda.species_scores.shape[0] == int((relative > threshold).sum())


def test_forward_selection_keeps_the_gradient(env_dataset, fast_config):
    engine = EnvironmentCorrelationEngine(
        env_dataset, add_data=env_dataset.sample_table[['pH']], config=fast_config
    )
    rda = engine.cal_rda(feature_sel=True)
    assert rda.selected_variables == ['pH']
    with pytest.raises(StatTestFailure):
        engine.trans_rda()


def test_envsquare(engine):
    with pytest.raises(ConfigurationError):
        engine.cal_rda_envsquare()
    engine.cal_rda()
    fit = engine.cal_rda_envsquare(n_permutations=19)
    assert list(fit.columns) == ['RDA1', 'RDA2', 'r2', 'p_value']
    assert list(fit.index) == ['pH', 'Temp', 'Moisture', 'Soil']
    assert fit['r2'].between(0, 1).all()
    assert engine.res_rda_envsquare is fit


def test_trans_rda(engine):
    with pytest.raises(ConfigurationError):
        engine.trans_rda()
    engine.cal_rda(use_dbrda=False)
    plot_data = engine.trans_rda(show_taxa=3, adjust_arrow_length=True)
    assert plot_data.eigen_labels[0].startswith("RDA1 [")
    assert plot_data.eigen_labels[1].startswith("RDA2 [")
    assert {'x', 'y', 'Region'} <= set(plot_data.sites.columns)
    assert list(plot_data.arrows.index) == ['pH', 'Temp', 'Moisture', 'Soil']
    assert len(plot_data.taxa_arrows) == 3
    assert not plot_data.taxa_arrows['label'].str.endswith("__").any()
    assert engine.res_rda_trans is plot_data

# ===================================== SCATTER FIT ================================== #

def test_scatterfit_between_variables(engine):
    fit = engine.scatterfit_data('pH', 'Temp')
    assert fit.label.startswith("R = ")
    assert len(fit.data) == 10
    by_position = engine.scatterfit_data(0, 1)
    assert by_position.fit['estimate'] == pytest.approx(fit.fit['estimate'])


def test_scatterfit_linear_model(engine):
    fit = engine.scatterfit_data('pH', 'Moisture', use_cor=False)
    assert fit.label.startswith("y = ")
    assert "R² = " in fit.label


def test_scatterfit_with_distance_matrices(engine, env_dataset):
    matrix = env_dataset.beta_diversity['bray']
    vector_and_matrix = engine.scatterfit_data(matrix, 'pH')
    assert len(vector_and_matrix.data) == 45
    both = engine.scatterfit_data(matrix, matrix.to_numpy())
    assert both.fit['estimate'] == pytest.approx(1.0)


def test_scatterfit_shape_errors(engine):
    with pytest.raises(DataShapeError):
        engine.scatterfit_data([1.0, 2.0, 3.0], 'pH')
    with pytest.raises(DataShapeError):
        engine.scatterfit_data({'a': 1}, 'pH')
    with pytest.raises(DataShapeError):
        engine.scatterfit_data(pd.DataFrame(np.zeros((10, 2))), 'pH')
