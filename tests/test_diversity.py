"""
Tests for the alpha and beta diversity calculators.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging

# Third-Party Imports
import numpy as np
import pandas as pd
import pytest

# Local Imports
from microtrans.diversity import alpha_diversity, beta_diversity, chao1, fisher_alpha
from microtrans.exceptions import ConfigurationError, DataShapeError

# ===================================== TESTS ======================================== #

@pytest.fixture
def counts():
    return pd.DataFrame(
        [[10, 10, 10, 10], [1, 1, 2, 20], [0, 5, 0, 5]],
        index=['even', 'skewed', 'sparse'], columns=['t1', 't2', 't3', 't4']
    )


def test_evenness_metrics(counts):
    table = alpha_diversity(counts, ['observed', 'shannon', 'simpson', 'invsimpson'])
    assert list(table.columns) == ['Observed', 'Shannon', 'Simpson', 'InvSimpson']
    assert table.loc['even', 'Shannon'] == pytest.approx(np.log(4))
    assert table.loc['even', 'Simpson'] == pytest.approx(0.75)
    assert table.loc['even', 'InvSimpson'] == pytest.approx(4)
    assert table.loc['sparse', 'Observed'] == 2
    assert table.loc['sparse', 'Shannon'] == pytest.approx(np.log(2))


def test_chao1_and_its_standard_error(counts):
    table = alpha_diversity(counts, ['chao1'])
    assert list(table.columns) == ['Chao1', 'se.chao1']
    # 4 observed, two singletons, one doubleton
    assert table.loc['skewed', 'Chao1'] == pytest.approx(4 + 2 * 1 / (2 * 2))
    assert table.loc['even', 'Chao1'] == 4
    estimate, se = chao1(np.array([1, 1, 2, 5]))
    assert estimate == pytest.approx(4.5)
    assert se > 0


def test_count_metrics_need_integers(counts, caplog):
    with caplog.at_level(logging.WARNING, logger="microtrans"):
        table = alpha_diversity(counts / 3, ['chao1', 'shannon'])
    assert table['Chao1'].isna().all()
    assert table['se.chao1'].isna().all()
    assert table['Shannon'].notna().all()
    assert "Non-integer values" in caplog.text


def test_fisher_and_coverage(counts):
    table = alpha_diversity(counts, ['fisher', 'coverage', 'ace'])
    assert table.loc['even', 'Fisher'] > 0
    assert table.loc['skewed', 'Coverage'] == pytest.approx(1 - 2 / 24)
    assert table.loc['even', 'ACE'] == 4
    assert np.isnan(fisher_alpha(np.array([1, 1, 1])))


def test_alpha_input_checks(counts):
    with pytest.raises(ConfigurationError):
        alpha_diversity(counts, ['faith_pd'])
    with pytest.raises(DataShapeError):
        alpha_diversity(counts - 20)


def test_bray_curtis(counts):
    distances = beta_diversity(counts, 'bray')
    assert distances.shape == (3, 3)
    assert np.allclose(np.diag(distances), 0)
    assert np.allclose(distances, distances.T)
    # |10-0| + |10-5| + |10-0| + |10-5| over 40 + 10
    assert distances.loc['even', 'sparse'] == pytest.approx(30 / 50)


def test_jaccard_uses_presence(counts):
    distances = beta_diversity(counts, 'jaccard')
    assert distances.loc['even', 'skewed'] == 0
    assert distances.loc['even', 'sparse'] == pytest.approx(0.5)


def test_beta_input_checks(counts):
    with pytest.raises(ConfigurationError):
        beta_diversity(counts, 'unifrac')
    with pytest.raises(DataShapeError):
        beta_diversity(counts.iloc[:1])
