"""
Validation of the environment-driven settings for the RTP tools.

Every setting is optional and has a safe default, but a value that is present
and malformed fails fast with ``ConfigValidationError`` instead of silently
falling back.
"""

import os
import warnings
from typing import Dict, List, Optional

DEFAULT_SLOTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), 'public', 'slots'))
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigValidationError(Exception):
    """Raised when a setting is present but invalid."""
    pass


class ConfigValidator:
    """Collects errors and warnings for the SLOT_MATH_* environment variables."""

    def __init__(self, environ=None):
        self.environ = environ if environ is not None else os.environ
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def _get(self, var_name: str) -> Optional[str]:
        value = self.environ.get(var_name)
        if value is None or not str(value).strip():
            return None
        return str(value).strip()

    def validate_positive_int(self, var_name: str, default: int) -> int:
        raw = self._get(var_name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            self.errors.append(f"{var_name} must be an integer, got '{raw}'")
            return default
        if value <= 0:
            self.errors.append(f"{var_name} must be positive, got {value}")
            return default
        return value

    def validate_tolerance(self) -> float:
        raw = self._get('SLOT_MATH_RTP_TOLERANCE')
        if raw is None:
            return 0.005
        try:
            value = float(raw)
        except ValueError:
            self.errors.append(f"SLOT_MATH_RTP_TOLERANCE must be a number, got '{raw}'")
            return 0.005
        if not 0 < value < 1:
            self.errors.append(f"SLOT_MATH_RTP_TOLERANCE must be a relative tolerance in (0, 1), got {value}")
        elif value > 0.05:
            self.warnings.append(f"SLOT_MATH_RTP_TOLERANCE={value} is loose; divergence checks will rarely trip")
        return value

    def validate_seed(self) -> Optional[int]:
        raw = self._get('SLOT_MATH_SEED')
        if raw is None:
            return None
        try:
            seed = int(raw)
        except ValueError:
            self.errors.append(f"SLOT_MATH_SEED must be an integer, got '{raw}'")
            return 0
        if seed < 0:
            self.errors.append(f"SLOT_MATH_SEED must be non-negative, got {seed}")
        return seed

    def validate_log_level(self) -> str:
        level = (self._get('SLOT_MATH_LOG_LEVEL') or 'INFO').upper()
        if level not in LOG_LEVELS:
            self.errors.append(f"SLOT_MATH_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got '{level}'")
            return 'INFO'
        return level

    def validate_flag(self, var_name: str, default: bool = False) -> bool:
        raw = self._get(var_name)
        if raw is None:
            return default
        lowered = raw.lower()
        if lowered in ('true', '1', 't', 'yes'):
            return True
        if lowered in ('false', '0', 'f', 'no'):
            return False
        self.errors.append(f"{var_name} must be a boolean flag, got '{raw}'")
        return default

    def validate_slots_dir(self) -> str:
        path = self._get('SLOT_MATH_SLOTS_DIR') or DEFAULT_SLOTS_DIR
        if not os.path.isdir(path):
            self.errors.append(f"SLOT_MATH_SLOTS_DIR '{path}' is not a directory")
        return path

    def validate_all(self) -> Dict:
        validated = {
            'ITERATIONS': self.validate_positive_int('SLOT_MATH_ITERATIONS', 1_000_000),
            'WORKERS': self.validate_positive_int('SLOT_MATH_WORKERS', os.cpu_count() or 1),
            'SEED': self.validate_seed(),
            'RTP_TOLERANCE': self.validate_tolerance(),
            'LOG_LEVEL': self.validate_log_level(),
            'LOG_JSON': self.validate_flag('SLOT_MATH_LOG_JSON'),
            'SLOTS_DIR': self.validate_slots_dir(),
            'GRAPH_DIR': self._get('SLOT_MATH_GRAPH_DIR') or 'slot_tester_graphs',
        }

        for warning in self.warnings:
            warnings.warn(warning, UserWarning)

        if self.errors:
            raise ConfigValidationError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in self.errors)
            )
        return validated


def validate_settings(environ=None) -> Dict:
    """Validates the SLOT_MATH_* environment and returns the resolved settings."""
    return ConfigValidator(environ).validate_all()
