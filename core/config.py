"""
Configuration loading.

Loads configuration from a YAML file and environment variables, and lets the
CLI apply its own overrides on top: CLI > env > config file > defaults.

Filters and retention states are parsed into their typed forms here, once, so
every malformed pattern, action or TTL is reported before the first network
call.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import yaml

from core.errors import ConfigError
from core.filters import MessageFilter
from core.labels import INBOX
from core.retention import RetentionState
from core.state import DEFAULT_CHECKPOINT_FILE

logger = logging.getLogger(__name__)

CONFIG_ENV = "IMAP_FILTER_CONFIG"

DEFAULT_STATES_MAILBOX = "[Gmail]/All Mail"

# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    Path("~/.config/imap-filter/imap-filter.yml").expanduser(),
    Path("imap-filter.yml"),
]

TOP_LEVEL_KEYS = {
    "imap_domain", "imap_username", "imap_password", "imap_port", "mailbox", "states_mailbox",
    "inbox_label", "dry_run", "log_level", "label_cache", "incremental",
    "checkpoint_file", "filters", "states",
}

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class Config:
    """
    Main configuration container.

    Holds connection settings, run options, and the ordered filters and
    retention states.
    """
    # Connection
    imap_domain: Optional[str] = None
    imap_username: Optional[str] = None
    imap_password: Optional[str] = None
    imap_port: int = 993
    mailbox: str = "INBOX"
    # Retention states search here; Gmail's All Mail also holds moved messages
    states_mailbox: str = DEFAULT_STATES_MAILBOX

    # General settings
    inbox_label: str = INBOX
    dry_run: bool = False
    log_level: str = "INFO"
    label_cache: bool = False
    incremental: bool = False
    checkpoint_file: Path = DEFAULT_CHECKPOINT_FILE

    # Rules, in configured order
    filters: List[MessageFilter] = field(default_factory=list)
    states: List[RetentionState] = field(default_factory=list)

    # File the configuration was read from, if any
    source: Optional[Path] = None

    def credentials(self) -> Tuple[str, str, str]:
        """
        Return (domain, username, password), falling back to 1Password for
        the password.

        Raises:
            ConfigError: If any of the three is missing
        """
        from auth import load_password

        if not self.imap_domain:
            raise ConfigError("IMAP domain is required (imap_domain, IMAP_DOMAIN or --imap-domain)")
        if not self.imap_username:
            raise ConfigError("IMAP username is required (imap_username, IMAP_USERNAME or --imap-username)")
        password = self.imap_password or load_password()  # allow-secret
        if not password:
            raise ConfigError("IMAP password is required (imap_password, IMAP_PASSWORD or 1Password)")
        return self.imap_domain, self.imap_username, password


def load_yaml_config(path: Path) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    logger.info(f"Loaded config from {path}")
    return data


def find_config_file() -> Optional[Path]:
    """Find the first existing config file."""
    env_path = os.getenv(CONFIG_ENV)
    if env_path:
        path = Path(env_path).expanduser()
        if path.exists():
            return path
        logger.warning(f"{CONFIG_ENV} points to missing file {path}")

    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[Path] = None, env_prefix: str = "IMAP_FILTER_") -> Config:
    """
    Load configuration with proper precedence.

    Priority (highest to lowest):
    1. Environment variables (IMAP_DOMAIN, IMAP_USERNAME, IMAP_PASSWORD, IMAP_FILTER_*)
    2. Config file
    3. Defaults

    Args:
        config_path: Explicit config file path (must exist when given)
        env_prefix: Prefix for run-option environment variables

    Returns:
        Populated Config object

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    config = Config()

    if config_path is not None:
        config_path = Path(config_path).expanduser()
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_file()

    if config_path:
        apply_yaml_config(config, load_yaml_config(config_path))
        config.source = config_path
    else:
        logger.warning("No config file found; running with no filters or states")

    _apply_env_config(config, env_prefix)
    return config


def iter_named(section: Any, kind: str) -> Iterator[Tuple[str, Any]]:
    """
    Yield (name, body) pairs from a filters/states section.

    The section is a list of single-key mappings (``- name: {...}``), which
    keeps the configured order; a plain mapping is accepted too.
    """
    if section is None:
        return
    if isinstance(section, dict):
        items = [section]
    elif isinstance(section, list):
        items = section
    else:
        raise ConfigError(f"'{kind}' must be a list of named entries")

    seen = set()
    for item in items:
        if not isinstance(item, dict) or not item:
            raise ConfigError(f"Each entry in '{kind}' must be a mapping of name to settings, got {item!r}")
        for name, body in item.items():
            name = str(name)
            if name in seen:
                raise ConfigError(f"Duplicate name '{name}' in '{kind}'")
            seen.add(name)
            yield name, body


def parse_filters(section: Any) -> List[MessageFilter]:
    """Parse the 'filters' section into MessageFilters, in order."""
    return [MessageFilter.from_config(name, body) for name, body in iter_named(section, "filters")]


def parse_states(section: Any) -> List[RetentionState]:
    """Parse the 'states' section into RetentionStates, in order."""
    return [RetentionState.from_config(name, body) for name, body in iter_named(section, "states")]


def _bool_setting(data: Dict[str, Any], key: str) -> bool:
    value = data[key]
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}")
    return value


def apply_yaml_config(config: Config, data: Dict[str, Any]) -> None:
    """Apply YAML configuration data to config object."""
    if not data:
        return

    unknown = set(data) - TOP_LEVEL_KEYS
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")

    # Connection
    for key in (
        "imap_domain", "imap_username", "imap_password", "mailbox", "states_mailbox",
        "inbox_label", "log_level",
    ):
        if key in data and data[key] is not None:
            setattr(config, key, str(data[key]))
    if "imap_port" in data:
        try:
            config.imap_port = int(data["imap_port"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"'imap_port' must be an integer, got {data['imap_port']!r}") from e

    # General settings
    for key in ("dry_run", "label_cache", "incremental"):
        if key in data:
            setattr(config, key, _bool_setting(data, key))
    if data.get("checkpoint_file"):
        config.checkpoint_file = Path(str(data["checkpoint_file"])).expanduser()

    # Rules
    config.filters = parse_filters(data.get("filters"))
    config.states = parse_states(data.get("states"))


def _apply_env_config(config: Config, prefix: str) -> None:
    """Apply environment variable overrides to config object."""
    if os.getenv("IMAP_DOMAIN"):
        config.imap_domain = os.getenv("IMAP_DOMAIN")
    if os.getenv("IMAP_USERNAME"):
        config.imap_username = os.getenv("IMAP_USERNAME")
    if os.getenv("IMAP_PASSWORD"):
        config.imap_password = os.getenv("IMAP_PASSWORD")

    if os.getenv(f"{prefix}LOG_LEVEL"):
        config.log_level = os.getenv(f"{prefix}LOG_LEVEL")
    if os.getenv(f"{prefix}DRY_RUN"):
        config.dry_run = os.getenv(f"{prefix}DRY_RUN", "").lower() in TRUE_VALUES
    if os.getenv(f"{prefix}CHECKPOINT_FILE"):
        config.checkpoint_file = Path(os.getenv(f"{prefix}CHECKPOINT_FILE")).expanduser()


def create_sample_config(path: Optional[Path] = None) -> str:
    """
    Generate a sample configuration file.

    Args:
        path: Optional path to write the config file

    Returns:
        Sample YAML configuration string
    """
    sample = r'''# imap-filter configuration
# Place this file at ~/.config/imap-filter/imap-filter.yml

# Connection (IMAP_DOMAIN / IMAP_USERNAME / IMAP_PASSWORD override these)
imap_domain: imap.gmail.com
# imap_username: you@example.org
# imap_password: read from IMAP_PASSWORD or 1Password when omitted

# Filters run against mailbox; retention states search states_mailbox,
# which must also contain messages the filters moved out of the inbox.
mailbox: INBOX
states_mailbox: "[Gmail]/All Mail"

# Log intended changes without making them
dry_run: false

# Logging level (DEBUG, INFO, WARNING, ERROR)
log_level: INFO

# Only filter inbox messages newer than the last run
incremental: false
# checkpoint_file: ~/.config/imap-filter/state.json

# Filters run in order; the first filter a message matches wins.
# Address fields take one pattern or a list; [] means "must be empty".
filters:
  - only-me:
      to: "you@example.org"
      cc: []
      action: Star
  - team:
      from: ["*@example.org", "*@example.com"]
      actions: [Flag, "Move:Team"]
  - receipts:
      subject: ["*receipt*", "*invoice*"]
      action: {Move: Receipts}

# Retention states run after the filters, over states_mailbox. Starred or
# important messages are never touched. "Read" moves old read mail to
# ToBeDeleted; "Junk" deletes it 30 days later.
states:
  - Starred:
      query: 'X-GM-LABELS "\Starred"'
      ttl: keep
  - Read:
      query: SEEN
      ttl: 7d
      action: ToBeDeleted
  - Unread:
      query: UNSEEN
      ttl: {read: 7d, unread: 21d}
      nerf: true   # dry run for this state only
  - Junk:
      query: 'X-GM-LABELS "ToBeDeleted"'
      ttl: 30d
      action: delete
'''

    if path:
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(sample)
        logger.info(f"Created sample config at {path}")

    return sample
