# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from functools import wraps

# Local Imports
from microtrans import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def prep_step(description: str):
    """Decorator to log plot data preparation steps."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger.debug(f"→ {description}")
            result = func(*args, **kwargs)
            logger.debug(f"✓ {description}")
            return result
        return wrapper
    return decorator


def format_p_value(p_value: float, digits: int = 4) -> str:
    """' < 0.0001' for very small p-values, otherwise ' = <rounded p>'."""
    if p_value < 0.0001:
        return " < 0.0001"
    return f" = {format_number(p_value, digits)}"


def format_number(value: float, digits: int) -> str:
    """Round like R's `round` and drop a trailing '.0'."""
    text = str(round(float(value), digits))
    return text[:-2] if text.endswith(".0") else text


def axis_label(prefix: str, index: int, proportion: float) -> str:
    """Axis title carrying the percentage of constrained variance, e.g. 'RDA1 [35.2%]'."""
    return f"{prefix}{index} [{format_number(100 * proportion, 1)}%]"
