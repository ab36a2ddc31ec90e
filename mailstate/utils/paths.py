"""Centralized path definitions for mailstate.

Every file the library writes (logs, the JSON config) lives under a single
base directory, overridable with the MAILSTATE_HOME environment variable.
"""

import os
from pathlib import Path

# Base application directory
MAILSTATE_DIR = Path(os.environ.get("MAILSTATE_HOME", Path.home() / ".mailstate"))

# Subdirectories
LOGS_DIR = MAILSTATE_DIR / "logs"

# Specific files
CONFIG_PATH = MAILSTATE_DIR / "config.json"
