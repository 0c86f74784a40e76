"""
Shared synthetic datasets for the microtrans test suite.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from types import SimpleNamespace

# Third-Party Imports
import numpy as np
import pandas as pd
import pytest

# Local Imports
from microtrans.diversity import alpha_diversity, beta_diversity
from microtrans.stats.utils import merge_taxa

# ==================================== FIXTURES ====================================== #

GENERA = [
    ("Firmicutes", "g__Bacillus"),
    ("Firmicutes", "g__Clostridium"),
    ("Proteobacteria", "g__Pseudomonas"),
    ("Proteobacteria", "g__Escherichia"),
    ("Actinobacteria", "g__Streptomyces"),
    ("Actinobacteria", "g__"),
]


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def fast_config():
    """Config with few permutations to keep permutation tests quick."""
    return {
        'alpha': {'max_kw_groups': 5, 'duncan_alpha': 0.05},
        'env': {'permutations': 99, 'random_state': 0},
    }


@pytest.fixture
def alpha_dataset(rng):
    """12 samples in 3 well separated groups (means C > B > A)."""
    samples = [f"S{i:02d}" for i in range(12)]
    groups = ["A"] * 4 + ["B"] * 4 + ["C"] * 4
    centres = np.repeat([2.0, 3.0, 4.0], 4)
    alpha = pd.DataFrame({
        'Shannon': centres + rng.normal(0, 0.05, 12),
        'Simpson': centres / 5 + rng.normal(0, 0.01, 12),
        'se.chao1': rng.uniform(0, 1, 12),
    }, index=samples)
    sample_table = pd.DataFrame({
        'Group': groups,
        'Site': ["north", "south"] * 6,
    }, index=samples)
    return SimpleNamespace(alpha_diversity=alpha, sample_table=sample_table)


@pytest.fixture
def env_dataset(rng):
    """10 samples whose genus abundances follow a pH gradient."""
    samples = [f"S{i:02d}" for i in range(10)]
    ph = np.linspace(4.5, 8.5, 10)
    env = pd.DataFrame({
        'pH': ph,
        'Temp': rng.normal(15, 3, 10),
        'Moisture': rng.uniform(10, 40, 10),
        'Soil': ["clay", "sand"] * 5,
    }, index=samples)
    sample_table = env.assign(Region=["G1"] * 5 + ["G2"] * 5)

    features = [f"ASV{i}" for i in range(len(GENERA) * 2)]
    slopes = np.tile(np.linspace(-8, 8, len(GENERA)), 2)
    lam = np.clip(40 + np.outer(slopes, ph - ph.mean()), 1, None)
    otu_table = pd.DataFrame(rng.poisson(lam), index=features, columns=samples)
    tax_table = pd.DataFrame({
        'Phylum': [f"p__{p}" for p, _ in GENERA] * 2,
        'Genus': [g for _, g in GENERA] * 2,
    }, index=features)

    genus = merge_taxa(otu_table, tax_table, 'Genus')
    phylum = merge_taxa(otu_table, tax_table, 'Phylum')
    lineage = {g: f"k__Bacteria|p__{p}|{g}" for p, g in GENERA}
    taxa_abund = {
        'Phylum': (phylum / phylum.sum()).rename(index=lambda p: f"k__Bacteria|{p}"),
        'Genus': (genus / genus.sum()).rename(index=lineage),
    }
    return SimpleNamespace(
        sample_table=sample_table,
        otu_table=otu_table,
        tax_table=tax_table,
        taxa_abund=taxa_abund,
        beta_diversity={'bray': beta_diversity(otu_table.T, 'bray')},
        alpha_diversity=alpha_diversity(otu_table.T, ['observed', 'shannon']),
    )


@pytest.fixture
def env_columns():
    return ['pH', 'Temp', 'Moisture', 'Soil']
