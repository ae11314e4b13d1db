"""
Settings for the RTP tools, resolved once from the environment (and ``.env``).
"""
from dotenv import load_dotenv

from slot_math.config_validator import validate_settings

load_dotenv()


class Config:
    """Environment-backed defaults for the calculator, simulator and CLI."""

    _validated_config = validate_settings()

    # Monte Carlo
    ITERATIONS = _validated_config['ITERATIONS']
    WORKERS = _validated_config['WORKERS']
    SEED = _validated_config['SEED']  # None: the CLI draws one per command
    BATCH_SIZE = 10_000

    # Cross-validation between the exact and simulated totals
    RTP_TOLERANCE = _validated_config['RTP_TOLERANCE']

    # Logging
    LOG_LEVEL = _validated_config['LOG_LEVEL']
    LOG_JSON = _validated_config['LOG_JSON']

    # Paths
    SLOTS_DIR = _validated_config['SLOTS_DIR']
    GRAPH_DIR = _validated_config['GRAPH_DIR']


class TestingConfig(Config):
    TESTING = True
    ITERATIONS = 20_000
    WORKERS = 1
    SEED = 12345
    RTP_TOLERANCE = 0.05
    LOG_LEVEL = 'WARNING'
    LOG_JSON = False
