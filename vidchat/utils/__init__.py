"""
Utility functions for configuration and logging.
"""

import os
import logging
import yaml
from pathlib import Path
from typing import Dict, Any
from dotenv import load_dotenv, find_dotenv


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Environment variables are loaded from the project-local .env first (so the
    value the developer edits wins), then from the nearest .env found from the
    working directory. String values of the form ${VAR} are replaced with the
    environment value when it is set.

    Args:
        config_path: Path to config file. Relative paths that do not exist
            from the working directory are resolved against the project root.

    Returns:
        Configuration dictionary
    """
    explicit_env = PROJECT_ROOT / ".env"
    dotenv_loaded = False

    if explicit_env.exists():
        load_dotenv(explicit_env, override=True)
        dotenv_loaded = True

    if not dotenv_loaded:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=True)
            dotenv_loaded = True

    if not dotenv_loaded:
        load_dotenv(override=False)

    path = Path(config_path)
    if not path.is_absolute() and not path.exists():
        path = PROJECT_ROOT / path

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, 'r') as f:
        config = yaml.safe_load(f) or {}

    return _expand_env_vars(config)


def _expand_env_vars(config: Any) -> Any:
    """
    Recursively expand environment variables in config.

    Unset variables expand to an empty string so optional secrets read as
    "not configured" instead of the literal placeholder.
    """
    if isinstance(config, dict):
        return {k: _expand_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [_expand_env_vars(item) for item in config]
    elif isinstance(config, str):
        if config.startswith('${') and config.endswith('}'):
            var_name = config[2:-1]
            return os.getenv(var_name, "")
        return config
    else:
        return config


def setup_logging(config: Dict[str, Any]):
    """
    Setup logging configuration.

    Args:
        config: Configuration dictionary
    """
    log_level = config.get('logging', {}).get('level', 'INFO')
    log_file = config.get('logging', {}).get('file', 'data/app.log')

    handlers = [logging.StreamHandler()]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )

    # Reduce noise from some libraries
    logging.getLogger('openai').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('pymongo').setLevel(logging.WARNING)
