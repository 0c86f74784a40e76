import re
from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #

# Total character width of the progress bar text
DEFAULT_PROGRESS_TEXT_N: int = 50
# Color of the progress bar description text
DEFAULT_DESCRIPTION_STYLE: str = "white"
# Width of the progress bar
DEFAULT_BAR_WIDTH: int = 40
# Color of the filled/complete portion of the progress bar
DEFAULT_BAR_COLUMN_COMPLETE_STYLE: str = "honeydew2"
# Color used when the progress bar is finished
DEFAULT_FINISHED_STYLE: str = "dark_cyan"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "references" / "config.yaml"
LOGGER_NAME = "microtrans"

# ==================================================================================== #
# ALPHA DIVERSITY
# ==================================================================================== #

DEFAULT_ALPHA_METRICS = [
    'observed', 'chao1', 'ace', 'shannon', 'simpson', 'invsimpson', 'fisher', 'coverage'
]
# Columns of an alpha diversity table holding standard errors (e.g. 'se.chao1')
SE_COLUMN_PATTERN = re.compile(r"^se")

DEFAULT_MEASURE = "Shannon"
# Rank-sum pairwise enumeration is refused above this many groups
DEFAULT_MAX_KW_GROUPS = 5
DEFAULT_DUNCAN_ALPHA = 0.05

SAMPLE_COLUMN = "Sample"
MEASURE_COLUMN = "Measure"
VALUE_COLUMN = "Value"

# ==================================================================================== #
# SIGNIFICANCE
# ==================================================================================== #

# Upper bounds (exclusive) and their labels, checked in order
SIGNIFICANCE_TIERS = [(0.001, "***"), (0.01, "**"), (0.05, "*")]
# Labels used for paired comparisons drawn on alpha plots
PAIR_COMPARE_TIERS = [(0.0001, "****"), (0.001, "***"), (0.01, "**"), (0.05, "*")]
PAIR_COMPARE_NS = "ns"

# ==================================================================================== #
# ENVIRONMENTAL ANALYSES
# ==================================================================================== #

DEFAULT_COR_METHOD = "pearson"
COR_METHODS = ("pearson", "spearman", "kendall")
DEFAULT_P_ADJUST_METHOD = "fdr"
DEFAULT_P_ADJUST_TYPE = "variable"
DEFAULT_TAXA_LEVEL = "Genus"
DEFAULT_PARTITION_LABEL = "All"

DEFAULT_PERMUTATIONS = 999
DEFAULT_RANDOM_STATE = 0
# Forward selection keeps adding terms while their permutation p-value is below this
DEFAULT_SELECTION_ALPHA = 0.05
# Share of the plot region filled by the longest biplot arrow
DEFAULT_ARROW_FILL = 0.75

# Unresolved or uncultured taxa are never used as features
UNRESOLVED_TAXA_PATTERN = re.compile(r"__$|__uncultured$")
UNLABELLED_TAXA_PATTERN = re.compile(r"__$|__uncultured|sp$")

# R-style p.adjust names mapped onto statsmodels.stats.multitest methods
P_ADJUST_METHODS = {
    'fdr': 'fdr_bh',
    'bh': 'fdr_bh',
    'by': 'fdr_by',
    'holm': 'holm',
    'hochberg': 'simes-hochberg',
    'hommel': 'hommel',
    'bonferroni': 'bonferroni',
}
