"""
YAML configuration for the billing back-office.

Every ``*.yaml`` file in the config directory becomes a section named after
the file (``billing.yaml`` -> ``config.billing``). Values may reference the
environment two ways:

- ``${VAR}`` or ``${VAR:-default}`` inside any string value
- keys ending in ``_env`` hold the *name* of a variable, e.g.
  ``password_env: POSTGRESQL_PASSWORD``; reading the key returns its value

Secrets therefore live in the environment (or the root ``.env`` file, loaded
on import with python-dotenv), never in the YAML files.
"""

import os
import re
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).parent.parent.parent  # backend/

_PLACEHOLDER = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _load_root_env():
    root_env = BACKEND_DIR.parent / '.env'
    if root_env.exists():
        load_dotenv(root_env)
        logger.debug(f"Loaded environment from {root_env}")


_load_root_env()


def resolve_env(value: Any) -> Any:
    """
    Expand ``${VAR}`` and ``${VAR:-default}`` placeholders in a string.

    Unset variables without a default expand to ''. Non-strings pass through.
    """
    if not isinstance(value, str) or '${' not in value:
        return value
    return _PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ''), value)


class ConfigSection:
    """
    Read-only view over one mapping of a YAML file, with attribute access.

    Missing keys read as None, so optional settings can be tested with a
    plain ``if config.app.uploads:``.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data = data or {}

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            return super().__getattribute__(name)
        return self._read(name)

    def _read(self, name: str) -> Any:
        value = self._data.get(name)
        if isinstance(value, dict):
            return ConfigSection(value)
        if name.endswith('_env') and isinstance(value, str):
            return os.environ.get(value)
        return resolve_env(value)

    def __getitem__(self, key: str) -> Any:
        return self._read(key)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        value = self._read(key)
        return default if value is None else value

    def to_dict(self) -> Dict[str, Any]:
        """The raw mapping, placeholders unexpanded."""
        return dict(self._data)

    def __repr__(self):
        return f"ConfigSection({sorted(self._data)})"


def find_config_dir() -> Path:
    """
    Locate the config directory.

    Order: ``$BILLING_CONFIG_DIR``, ``backend/config`` beside this package,
    then ``backend/config`` or ``config`` in the working directory or one of
    its parents.
    """
    override = os.environ.get('BILLING_CONFIG_DIR')
    if override:
        return Path(override)

    bundled = BACKEND_DIR / 'config'
    if bundled.is_dir():
        return bundled

    cwd = Path.cwd()
    for folder in [cwd, *cwd.parents][:5]:
        for candidate in (folder / 'backend' / 'config', folder / 'config'):
            if candidate.is_dir():
                return candidate

    raise FileNotFoundError("Could not find the billing config directory")


class AppConfig:
    """All YAML sections of one config directory."""

    def __init__(self, config_dir: Optional[str] = None):
        self._config_dir = Path(config_dir) if config_dir else find_config_dir()
        self._sections: Dict[str, ConfigSection] = {}
        self._load()

    def _load(self):
        if not self._config_dir.is_dir():
            logger.warning(f"Config directory not found: {self._config_dir}")
            return

        for path in sorted(self._config_dir.glob('*.yaml')):
            try:
                self._sections[path.stem] = ConfigSection(self._read_yaml(path))
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Skipping unreadable config {path.name}: {e}")

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def __getattr__(self, name: str) -> ConfigSection:
        if name.startswith('_'):
            return super().__getattribute__(name)
        return self._sections.get(name, ConfigSection())

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def get_config_files(self) -> List[str]:
        """Names of the loaded sections."""
        return list(self._sections)

    def get_raw_config(self, section: str) -> Dict[str, Any]:
        """Fresh parse of ``<section>.yaml``; {} when the file is absent."""
        path = self._config_dir / f"{section}.yaml"
        return self._read_yaml(path) if path.exists() else {}


_config_instance: Optional[AppConfig] = None


def get_config(config_dir: Optional[str] = None) -> AppConfig:
    """Process-wide AppConfig; ``config_dir`` only applies to the first call."""
    global _config_instance

    if _config_instance is None:
        _config_instance = AppConfig(config_dir)
    return _config_instance


def get_flask_config() -> Dict[str, Any]:
    """Flask settings from ``app.yaml``."""
    app_cfg = get_config().app

    secret_key = app_cfg.flask.secret_key_env if app_cfg.flask else None
    if not secret_key:
        import secrets
        secret_key = secrets.token_hex(32)
        logger.warning("FLASK secret key not set, sessions will not survive a restart")

    cron_secret = app_cfg.cron.secret_env if app_cfg.cron else None
    if not cron_secret:
        logger.warning("Cron secret not set, /api/cron endpoints will refuse every call")

    upload_mb = app_cfg.uploads.get('max_mb', 10) if app_cfg.uploads else 10

    return {
        'SECRET_KEY': secret_key,
        'DEBUG': bool(app_cfg.app.debug) if app_cfg.app else False,
        'JSON_SORT_KEYS': False,
        'CRON_SECRET': cron_secret,
        'MAX_CONTENT_LENGTH': int(upload_mb) * 1024 * 1024,
    }
