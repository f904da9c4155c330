"""Static configuration for copytune.

User-editable settings (storage, pacing, generation, logging) live in a
single JSON file for quick edits without touching Python. Agents, models,
brand terms and rules are managed through the CLI and stored in the
database instead.
"""

import json
import os

from dotenv import load_dotenv

load_dotenv()

# Relative paths resolve against the working directory unless overridden.
PROJECT_ROOT = os.path.abspath(os.getenv("COPYTUNE_HOME", os.getcwd()))

# config.json can be relocated for multiple workspaces.
CONFIG_PATH = os.getenv("COPYTUNE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json; a missing file means all defaults."""

    if not os.path.exists(CONFIG_PATH):
        return {}

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database holding settings and history.
DB_PATH = _CONFIG.get("db_path") or os.path.join(PROJECT_ROOT, "copytune.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# History length used until the stored settings say otherwise.
HISTORY_LIMIT = int(_CONFIG.get("history_limit", 100))

# Batch pacing keeps sequential calls under provider rate limits.
_batch = _CONFIG.get("batch", {})
BATCH_DELAY_SECONDS = float(_batch.get("delay_seconds", 0.5))

# Generation and transport settings shared by all providers.
_generation = _CONFIG.get("generation", {})
TEMPERATURE = float(_generation.get("temperature", 0.7))
MAX_TOKENS = int(_generation.get("max_tokens", 500))
REQUEST_TIMEOUT_SECONDS = float(_generation.get("timeout_seconds", 60))

# Environment seed for the first saved model (optional).
ENV_PROVIDER = os.getenv("COPYTUNE_PROVIDER", "openai")
ENV_MODEL = os.getenv("COPYTUNE_MODEL", "gpt-4o-mini")
ENV_API_KEY = os.getenv("COPYTUNE_API_KEY")
ENV_BASE_URL = os.getenv("COPYTUNE_BASE_URL")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
