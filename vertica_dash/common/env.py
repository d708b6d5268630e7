"""Utilities for loading environment configuration files."""
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)


def load_environment() -> Optional[Path]:
    """Load the first dotenv file found, then default APP_ENV to production.

    Candidates, in order: DOTENV_PATH, .env.<APP_ENV>, .env, .env.local.
    Values already present in the process environment are never overridden.

    Returns:
        Path to the dotenv file that was loaded, or None if nothing matched.
    """
    candidates = []
    if os.getenv("DOTENV_PATH"):
        candidates.append(Path(os.environ["DOTENV_PATH"]))
    if os.getenv("APP_ENV"):
        candidates.append(Path(f".env.{os.environ['APP_ENV']}"))
    candidates.extend([Path(".env"), Path(".env.local")])

    loaded_path = next((path for path in candidates if path.exists()), None)
    if loaded_path is not None:
        load_dotenv(dotenv_path=loaded_path)
        LOGGER.info("Loaded environment variables from %s", loaded_path)
    else:
        LOGGER.debug("No dotenv file found; using the process environment only.")

    os.environ.setdefault("APP_ENV", "production")
    return loaded_path
