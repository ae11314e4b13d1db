"""
Logging setup for the command line tools.

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
installed once here by whoever owns the process (the CLI, a test, a notebook).
"""
import logging
import os

from pythonjsonlogger import jsonlogger

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
JSON_FORMAT = '%(asctime)s %(levelname)s %(process)d %(module)s %(funcName)s %(lineno)d %(message)s'


class ProcessRoleFilter(logging.Filter):
    """Tags records from simulation worker processes so shards can be told apart."""

    def __init__(self, main_pid=None):
        super().__init__()
        self.main_pid = main_pid if main_pid is not None else os.getpid()

    def filter(self, record):
        record.role = 'main' if record.process == self.main_pid else 'worker'
        return True


def configure_logging(level='INFO', json_format=False, logger_name='slot_math'):
    logger = logging.getLogger(logger_name)
    handler = logging.StreamHandler()
    if json_format:
        formatter = jsonlogger.JsonFormatter(JSON_FORMAT + ' %(role)s')
    else:
        formatter = logging.Formatter(PLAIN_FORMAT)
    handler.setFormatter(formatter)
    handler.addFilter(ProcessRoleFilter())
    if logger.hasHandlers():
        logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    logger.propagate = False
    return logger
