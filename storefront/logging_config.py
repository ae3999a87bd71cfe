"""
logging_config.py: Centralized logging for the storefront service.

Every module obtains its logger through `get_logger(__name__)` so that the
format and handlers configured by `setup_logging()` apply uniformly.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s"


def setup_logging(level=logging.INFO):
    """
    Configures the root logger once for the whole application.

    Output goes to stdout only (container friendly). The HTTP stack used by
    the Razorpay SDK is turned down to WARNING.
    """
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name):
    """Returns the logger for a module or component name."""
    return logging.getLogger(name)
