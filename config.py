"""
Centralized configuration for eval-engine.

Loads environment variables from .env and provides validated paths and settings.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def get_int_var(var_name: str, default: int) -> int:
    """Retrieve an integer setting, falling back to the default on bad input."""
    value = os.getenv(var_name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: Ignoring non-integer value for '{var_name}': {value!r}")
        return default


def get_float_var(var_name: str, default: float) -> float:
    """Retrieve a float setting, falling back to the default on bad input."""
    value = os.getenv(var_name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        print(f"Warning: Ignoring non-numeric value for '{var_name}': {value!r}")
        return default


# -- Paths -------------------------------------------------------------------


STATE_DIR = Path(os.getenv("EVAL_ENGINE_STATE_DIR", str(Path.home() / ".eval_engine")))
LOG_DIR = STATE_DIR / "logs"

# -- Settings -----------------------------------------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEBUG = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

# Model providers
DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "ollama")
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")

# Evaluators
CODE_TIMEOUT_MS = get_int_var("CODE_TIMEOUT_MS", 5000)
LLM_MAX_ATTEMPTS = get_int_var("LLM_MAX_ATTEMPTS", 2)
LLM_RETRY_DELAY = get_float_var("LLM_RETRY_DELAY", 1.0)


def validate_config() -> None:
    """Validate that critical paths exist or can be created."""
    for path_var in [STATE_DIR, LOG_DIR]:
        if not path_var.exists():
            try:
                path_var.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create {path_var}: {e}")
