"""
HR Call Tracker: background reminder engine

Keeps HR staff aware of scheduled employee calls even when the tracker UI is
not in the foreground.

Components:
- notifications/: durable reminder queue, scheduler, delivery worker,
  cross-context messenger and foreground poller
- logging_config.py: structlog setup shared by every module
"""

from pathlib import Path

# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
ARGS_DIR = PROJECT_ROOT / "args"

__all__ = [
    "PROJECT_ROOT",
    "DATA_DIR",
    "ARGS_DIR",
]
