"""
Centralized logging configuration for the engine process.
"""

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logging once for a process.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ...)
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(level=numeric_level,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=[logging.StreamHandler(sys.stdout)])
