"""
Microbiome Trait Statistics
----------------------------------------------------------------------------------------
Alpha diversity differences between sample groups and the association of a
microbial community with its environment: redundancy analysis, Mantel tests and
feature × variable correlations with multiple-testing correction.
"""
from microtrans.alpha import DiversityDifferenceEngine
from microtrans.env import EnvironmentCorrelationEngine

__version__ = "0.1.0"

__all__ = ["DiversityDifferenceEngine", "EnvironmentCorrelationEngine"]
