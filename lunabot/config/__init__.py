from .loader import DEFAULTS, get_config
from .validator import ConfigValidationError, validate_config

__all__ = ["DEFAULTS", "get_config", "validate_config", "ConfigValidationError"]
