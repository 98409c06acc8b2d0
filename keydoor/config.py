import ast
import logging
import os
import os.path
from configparser import RawConfigParser
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from keydoor.common.exception import ConfigurationError

logging.basicConfig(level=logging.INFO)
base_logger = logging.getLogger("keydoor.config")


def environ_bool(env_name: str, default: bool) -> bool:
    val = os.getenv(env_name, "default").lower()
    if val in ["on", "true", "1"]:
        return True
    if val in ["off", "false", "0"]:
        return False
    if val == "default":
        return default
    raise ValueError(
        f"Environment variable {env_name} set to invalid value " f"{val} (use either on/true/1 or off/false/0)"
    )


DEFAULT_WORK_DIR = "/var/lib/keydoor"
WORK_DIR = os.getenv("KEYDOOR_DIR", DEFAULT_WORK_DIR)

# allow testing mode
TEST_MODE = environ_bool("KEYDOOR_TEST", False)
if TEST_MODE:
    base_logger.warning("Running keydoor in testing mode, KEYDOOR_DIR defaults to CWD")
    WORK_DIR = os.getenv("KEYDOOR_DIR", os.getcwd())

# Possible paths for base configuration files
CONFIG_FILES = {
    "door": ["/etc/keydoor/door.conf", "/usr/etc/keydoor/door.conf"],
    "logging": ["/etc/keydoor/logging.conf", "/usr/etc/keydoor/logging.conf"],
}

# Paths to directories in which options can be overriden using configuration
# snippets
CONFIG_SNIPPETS_DIRS = {
    "door": ["/usr/etc/keydoor/door.conf.d", "/etc/keydoor/door.conf.d"],
    "logging": ["/usr/etc/keydoor/logging.conf.d", "/etc/keydoor/logging.conf.d"],
}

CONFIG_ENV = {
    "door": os.environ.get("KEYDOOR_DOOR_CONFIG", ""),
    "logging": os.environ.get("KEYDOOR_LOGGING_CONFIG", ""),
}

# Enable DB debugging via environment variable DEBUG_DB
DEBUG_DB = environ_bool("DEBUG_DB", False)

DEFAULT_TIMEOUT = 60.0
DEFAULT_SESSION_RETRY_INTERVAL = 5.0
DEFAULT_AUTH_SCOPES = ["door:unlock"]
SESSION_VISIBILITIES = ("public", "private")

# Single instance
_config: Optional[Dict[str, RawConfigParser]] = None


def _check_file_permissions(component: str, file_path: str) -> bool:
    """Check that a config file exists and is readable by the service user."""
    if not os.path.exists(file_path):
        return False

    if not os.access(file_path, os.R_OK):
        base_logger.error(
            "Config file %s exists but is not readable. The keydoor_%s service needs read access to this file.",
            file_path,
            component,
        )
        return False

    return True


def _validate_config_files(component: str, file_paths: List[str], files_read: List[str]) -> None:
    for file_path in file_paths:
        if not _check_file_permissions(component, file_path):
            continue

        if file_path not in files_read:
            base_logger.error(
                "Config file %s exists but failed to parse. Check the [%s] section for duplicate options.",
                file_path,
                component,
            )


def get_config(component: str) -> RawConfigParser:
    """Find the configuration file to use for the given component and apply the
    overrides defined by configuration snippets.

    If a configuration file path is set through a KEYDOOR_*_CONFIG environment
    variable, that file is used and all other files for the component are
    ignored. Otherwise the first existing file in CONFIG_FILES is used as the
    base, /etc taking precedence over /usr/etc, and snippets from the matching
    CONFIG_SNIPPETS_DIRS are applied on top in lexical order.
    """

    global _config

    if not _config:
        _config = {}

    if not component:
        raise Exception("No component provided to get_config")

    if component not in _config:
        # Use RawConfigParser, so we can also use it as the logging config
        _config[component] = RawConfigParser()

        if not component in CONFIG_ENV:
            raise Exception(f"Invalid component '{component}'")

        if CONFIG_ENV[component]:
            if os.path.isfile(CONFIG_ENV[component]):
                config_files = _config[component].read(CONFIG_ENV[component])
                base_logger.info("Reading configuration from %s", config_files)
                return _config[component]

            base_logger.info(
                "Configuration file %s for %s set through environment variable not found, falling back to installed configuration",
                CONFIG_ENV[component],
                component,
            )

        if not any(os.path.exists(c) for c in CONFIG_FILES[component]):
            base_logger.warning(
                "Config file not found in %s. It is required by component %s.",
                CONFIG_FILES[component],
                component,
            )
        else:
            for c in CONFIG_FILES[component]:
                config_file = _config[component].read(c)
                _validate_config_files(component, [c], config_file)

                if config_file:
                    base_logger.info("Reading configuration from %s", config_file)

                    for d in (x for x in CONFIG_SNIPPETS_DIRS[component] if os.path.exists(x)):
                        snippets = sorted(
                            [os.path.join(d, f) for f in os.listdir(d) if f and os.path.isfile(os.path.join(d, f))]
                        )
                        applied_snippets = _config[component].read(snippets)
                        _validate_config_files(component, snippets, applied_snippets)

                        if applied_snippets:
                            base_logger.info("Applied configuration snippets from %s", d)

                    break

    return _config[component]


def reset() -> None:
    """Drop the cached configuration so that it is read again on next access."""
    global _config
    _config = None


def _get_env(component: str, option: str, section: Optional[str]) -> Optional[str]:
    opt_section = f"_{section.upper()}" if section else ""
    env_name = f"KEYDOOR_{component.upper()}{opt_section}_{option.upper()}"
    env_value = os.environ.get(env_name, None)
    if env_value is not None:
        log_msg = f'option "{option}" on section {section} for component {component}.conf was overriden by environment variable {env_name}'
        base_logger.info(log_msg.replace("on section None ", ""))

    return env_value


def getlist(component: str, option: str, section: Optional[str] = None) -> List[Any]:
    env_value = _get_env(component, option, section)
    if not section:
        section = component

    if env_value is not None:
        read = env_value.strip('" ')
    else:
        read = get_config(component).get(section, option).strip('" ')

    if read:
        try:
            l = ast.literal_eval(read)
            if isinstance(l, list):
                return [i.strip() if isinstance(i, str) else i for i in l]
            raise Exception(
                f"Config option '{option}' in section '{section}' " f"'of component {component} should be a list"
            )
        except Exception as e:
            raise Exception(
                f"Failed to get list from config for component '{component}', section '{section}', option '{option}'"
            ) from e

    raise Exception(f"Could not find option '{option}' in section '{section}' of component '{component}'")


def get(component: str, option: str, section: Optional[str] = None, fallback: str = "") -> str:
    env_value = _get_env(component, option, section)
    if not section:
        section = component

    if env_value is not None:
        return env_value.strip('" ')

    return get_config(component).get(section, option, fallback=fallback).strip('" ')


def getboolean(component: str, option: str, section: Optional[str] = None, fallback: bool = False) -> bool:
    env_value = _get_env(component, option, section)
    if not section:
        section = component

    if env_value is not None:
        env_value_lower = env_value.lower().strip('" ')
        if env_value_lower not in RawConfigParser.BOOLEAN_STATES:
            return fallback
        return RawConfigParser.BOOLEAN_STATES[env_value_lower]

    return get_config(component).getboolean(section, option, fallback=fallback)


def getfloat(component: str, option: str, section: Optional[str] = None, fallback: float = -1.0) -> float:
    env_value = _get_env(component, option, section)
    if not section:
        section = component

    if env_value is not None:
        return float(env_value)

    return get_config(component).getfloat(section, option, fallback=fallback)


def has_option(component: str, option: str, section: Optional[str] = None) -> bool:
    env_value = _get_env(component, option, section)
    if not section:
        section = component

    if env_value is not None:
        return True

    return get_config(component).has_option(section, option)


@dataclass(frozen=True)
class DoorConfig:
    """Settings of the door authorization daemon"""

    database_url: str
    door_id: int
    bridge_url: str
    actuator_url: str
    session_label: str = "keydoor"
    session_visibility: str = "private"
    session_retry_interval: float = DEFAULT_SESSION_RETRY_INTERVAL
    auth_scopes: Tuple[str, ...] = tuple(DEFAULT_AUTH_SCOPES)
    unlock_duration: Optional[int] = None
    request_timeout: float = DEFAULT_TIMEOUT
    auto_create_db: bool = False


def _required(option: str) -> str:
    value = get("door", option)
    if not value:
        raise ConfigurationError(f"The '{option}' option is not set for 'door'")
    return value


def load_door_config() -> DoorConfig:
    """Read the [door] section and validate it.

    Raises ConfigurationError when a required option is missing or an option
    holds a value of the wrong type.
    """
    database_url = _required("database_url")
    bridge_url = _required("bridge_url").rstrip("/")
    actuator_url = _required("actuator_url").rstrip("/")

    try:
        door_id = int(_required("door_id"))
    except ValueError as e:
        raise ConfigurationError(option="door_id") from e

    visibility = get("door", "session_visibility", fallback="private").lower()
    if visibility not in SESSION_VISIBILITIES:
        raise ConfigurationError(f"'session_visibility' must be one of {', '.join(SESSION_VISIBILITIES)}")

    try:
        retry_interval = getfloat("door", "session_retry_interval", fallback=DEFAULT_SESSION_RETRY_INTERVAL)
        request_timeout = getfloat("door", "request_timeout", fallback=DEFAULT_TIMEOUT)
        duration = get("door", "unlock_duration")
        unlock_duration = int(duration) if duration else None
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric option for 'door': {e}") from e

    if has_option("door", "auth_scopes"):
        try:
            scopes = tuple(str(s) for s in getlist("door", "auth_scopes"))
        except Exception as e:
            raise ConfigurationError(option="auth_scopes") from e
    else:
        scopes = tuple(DEFAULT_AUTH_SCOPES)

    return DoorConfig(
        database_url=database_url,
        door_id=door_id,
        bridge_url=bridge_url,
        actuator_url=actuator_url,
        session_label=get("door", "session_label", fallback="keydoor"),
        session_visibility=visibility,
        session_retry_interval=retry_interval,
        auth_scopes=scopes,
        unlock_duration=unlock_duration,
        request_timeout=request_timeout,
        auto_create_db=getboolean("door", "auto_create_db", fallback=False),
    )
