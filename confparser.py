"""
Configuration loading for the Canvas to Google Tasks sync.

Settings are read from a plain .conf file:
- Lines starting with # are comments
- Empty lines are ignored
- Key-value pairs: key = value
- Boolean values: key = true/false/yes/no
- Whole numbers are converted to integers
- Names, URLs and credentials are kept as written

Environment variables override the file, so the tool can also be configured
entirely from the environment (or a .env file loaded by the caller).
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_LIST_NAME = "Canvas (auto)"
DEFAULT_WINDOW_DAYS = 30
DEFAULT_SYNC_INTERVAL_MINUTES = 15
DEFAULT_OAUTH_PORT = 3000

# Placeholder some setups write instead of leaving the token empty
UNSET_REFRESH_TOKEN = "UNDEFINED"

DEFAULT_TEMPLATE = """# Canvas To-Do -> Google Tasks Sync Configuration
# Every setting can also be supplied through the environment variable
# shown in brackets; environment values win over this file.

# Canvas instance base URL, e.g. https://uk.instructure.com [CANVAS_BASE]
canvas_base =

# Canvas personal access token [CANVAS_TOKEN]
canvas_token =

# Google OAuth client (Desktop application) from Google Cloud Console
# [GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET]
google_client_id =
google_client_secret =

# Leave empty on first run; the tool runs the consent flow and prints it
# [GOOGLE_REFRESH_TOKEN]
google_refresh_token =

# Google Tasks list that receives the to-dos [GOOGLE_TASKS_LIST_NAME]
tasks_list_name = Canvas (auto)

# Only sync to-dos due within this many days [WINDOW_DAYS]
window_days = 30

# How often to sync in daemon mode (minutes) [SYNC_INTERVAL_MINUTES]
sync_interval_minutes = 15

# Local port for the OAuth consent callback [OAUTH_PORT]
oauth_port = 3000
"""

DEFAULTS = {
    'canvas_base': '',
    'canvas_token': '',
    'google_client_id': '',
    'google_client_secret': '',
    'google_refresh_token': '',
    'tasks_list_name': DEFAULT_LIST_NAME,
    'window_days': DEFAULT_WINDOW_DAYS,
    'sync_interval_minutes': DEFAULT_SYNC_INTERVAL_MINUTES,
    'oauth_port': DEFAULT_OAUTH_PORT,
}

# Settings kept as written; "yes" stays a list name and "0123" a token
STRING_KEYS = (
    'canvas_base',
    'canvas_token',
    'google_client_id',
    'google_client_secret',
    'google_refresh_token',
    'tasks_list_name',
)

# Config key -> environment variable names, first one set wins
ENV_KEYS = {
    'canvas_base': ('CANVAS_BASE',),
    'canvas_token': ('CANVAS_TOKEN',),
    'google_client_id': ('GOOGLE_CLIENT_ID',),
    'google_client_secret': ('GOOGLE_CLIENT_SECRET',),
    'google_refresh_token': ('GOOGLE_REFRESH_TOKEN',),
    'tasks_list_name': ('GOOGLE_TASKS_LIST_NAME', 'TASKS_LIST_NAME'),
    'window_days': ('WINDOW_DAYS',),
    'sync_interval_minutes': ('SYNC_INTERVAL_MINUTES',),
    'oauth_port': ('OAUTH_PORT',),
}


class ConfigurationError(Exception):
    """Raised when required settings are missing."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing required settings: {', '.join(self.missing)}")


def parse_value(value: str) -> Any:
    """Parse a string value into appropriate Python type.

    Args:
        value: Raw string value from config file

    Returns:
        Parsed value (bool, int or string)
    """
    value = value.strip()

    if not value:
        return ''

    # Numbers are checked first so "0" stays a window of zero days
    try:
        return int(value)
    except ValueError:
        pass

    if value.lower() in ('true', 'yes'):
        return True
    if value.lower() in ('false', 'no'):
        return False

    return value


def load_config(filepath: str, defaults: Optional[Dict[str, Any]] = None,
                text_keys: Iterable[str] = ()) -> Dict[str, Any]:
    """Load configuration from a plain .conf file.

    Args:
        filepath: Path to the configuration file
        defaults: Optional dictionary of default values
        text_keys: Keys whose values are kept as stripped strings

    Returns:
        Dictionary with configuration values
    """
    config = dict(defaults) if defaults else {}
    text_keys = set(text_keys)

    if not os.path.exists(filepath):
        return config

    with open(filepath, 'r') as f:
        for line in f:
            line = line.strip()

            if not line or line.startswith('#'):
                continue

            if '=' not in line:
                continue

            key, _, value = line.partition('=')
            key = key.strip()
            if not key:
                continue

            config[key] = value.strip() if key in text_keys else parse_value(value)

    return config


def create_default_config(filepath: str, template: str = DEFAULT_TEMPLATE):
    """Create a default configuration file from a template string.

    Args:
        filepath: Path where config file should be created
        template: Template string content for the config file
    """
    with open(filepath, 'w') as f:
        f.write(template)


def parse_int_setting(name: str, value: Any, default: int) -> int:
    """Return a non-negative integer setting, falling back to the default."""
    if value is None or value == '' or isinstance(value, bool):
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name} '{value}', using {default}")
        return default
    if number < 0:
        logger.warning(f"Ignoring negative {name} {number}, using {default}")
        return default
    return number


def _as_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


@dataclass
class SyncConfig:
    """Settings for one sync run, built once and passed to the sync manager."""

    canvas_base: str = ''
    canvas_token: str = ''
    google_client_id: str = ''
    google_client_secret: str = ''
    google_refresh_token: str = ''
    tasks_list_name: str = DEFAULT_LIST_NAME
    window_days: int = DEFAULT_WINDOW_DAYS
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    oauth_port: int = DEFAULT_OAUTH_PORT

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.google_refresh_token) and self.google_refresh_token != UNSET_REFRESH_TOKEN

    def validate_google_env(self):
        """Require the OAuth client settings needed for any Google call."""
        missing = []
        if not self.google_client_id:
            missing.append('GOOGLE_CLIENT_ID')
        if not self.google_client_secret:
            missing.append('GOOGLE_CLIENT_SECRET')
        if missing:
            raise ConfigurationError(missing)

    def validate_sync_env(self):
        """Require everything a sync run needs, before any network activity."""
        missing = []
        if not self.canvas_base:
            missing.append('CANVAS_BASE')
        if not self.canvas_token:
            missing.append('CANVAS_TOKEN')
        if not self.google_client_id:
            missing.append('GOOGLE_CLIENT_ID')
        if not self.google_client_secret:
            missing.append('GOOGLE_CLIENT_SECRET')
        if not self.has_refresh_token:
            missing.append('GOOGLE_REFRESH_TOKEN')
        if missing:
            raise ConfigurationError(missing)


def load_sync_config(filepath: Optional[str] = None,
                     environ: Optional[Mapping[str, str]] = None) -> SyncConfig:
    """Build a SyncConfig from a .conf file overlaid with environment variables.

    Args:
        filepath: Optional path to a .conf file; a missing file is ignored
        environ: Environment mapping, defaults to os.environ

    Returns:
        The resolved SyncConfig
    """
    environ = os.environ if environ is None else environ

    values = dict(DEFAULTS)
    if filepath:
        values = load_config(filepath, values, text_keys=STRING_KEYS)

    for key, names in ENV_KEYS.items():
        for name in names:
            if environ.get(name):
                values[key] = environ[name]
                break

    return SyncConfig(
        canvas_base=_as_text(values['canvas_base']).rstrip('/'),
        canvas_token=_as_text(values['canvas_token']),
        google_client_id=_as_text(values['google_client_id']),
        google_client_secret=_as_text(values['google_client_secret']),
        google_refresh_token=_as_text(values['google_refresh_token']),
        tasks_list_name=_as_text(values['tasks_list_name']) or DEFAULT_LIST_NAME,
        window_days=parse_int_setting('window_days', values['window_days'], DEFAULT_WINDOW_DAYS),
        sync_interval_minutes=parse_int_setting(
            'sync_interval_minutes', values['sync_interval_minutes'], DEFAULT_SYNC_INTERVAL_MINUTES
        ),
        oauth_port=parse_int_setting('oauth_port', values['oauth_port'], DEFAULT_OAUTH_PORT),
    )
