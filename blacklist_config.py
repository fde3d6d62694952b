"""
Run configuration.

Values are layered, lowest precedence first: built-in defaults, the process
environment, a shell-style KEY=value configuration file (read with
python-dotenv) and finally command-line overrides. The result is a frozen
``Settings`` handed to every component.
"""
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import dotenv_values

from blacklist_errors import ConfigurationError

# ---- Defaults ----
DEFAULT_HASHSIZE = 16384
DEFAULT_MAXELEM = 65536
DEFAULT_IPTABLES_POSITION = 1
DEFAULT_CHAIN = "INPUT"
DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_LOCK_FILE = "/run/lock/ipset-fail2ban.lock"
TMP_SUFFIX = "-tmp"

# ipset refuses set names longer than 31 characters
SET_NAME_RE = re.compile(r"^[A-Za-z0-9:_.-]{1,31}$")

CONFIG_KEYS = (
    "BLACKLIST_FILE",
    "IPSET_BLACKLIST",
    "IPSET_TMP_BLACKLIST",
    "IPSET_RESTORE_FILE",
    "JAILS",
    "CLEANUP",
    "QUIET",
    "IPTABLES_IPSET_POSITION",
    "IPTABLES_CHAIN",
    "HASHSIZE",
    "MAXELEM",
    "LOCK_FILE",
    "LOG_FILE",
    "COMMAND_TIMEOUT",
)

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class Settings:
    jails: Tuple[str, ...]
    blacklist_file: Optional[Path] = None
    ipset_blacklist: Optional[str] = None
    ipset_tmp_blacklist: Optional[str] = None
    ipset_restore_file: Optional[Path] = None
    cleanup: bool = False
    quiet: bool = False
    verbose: bool = False
    iptables_position: int = DEFAULT_IPTABLES_POSITION
    iptables_chain: str = DEFAULT_CHAIN
    hashsize: int = DEFAULT_HASHSIZE
    maxelem: int = DEFAULT_MAXELEM
    lock_file: Optional[Path] = Path(DEFAULT_LOCK_FILE)
    log_file: Optional[Path] = None
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT

    @property
    def enforcement_enabled(self) -> bool:
        return bool(self.ipset_blacklist)

    @property
    def staging_name(self) -> Optional[str]:
        if not self.ipset_blacklist:
            return None
        return self.ipset_tmp_blacklist or f"{self.ipset_blacklist}{TMP_SUFFIX}"


def parse_bool(key: str, value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {value!r}")


def parse_int(key: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from None


def parse_float(key: str, value: str) -> float:
    try:
        return float(value.strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from None


def parse_jails(value: str) -> Tuple[str, ...]:
    """Split a jail list. Accepts ``sshd,recidive``, ``sshd recidive`` and ``(sshd recidive)``."""
    value = value.strip()
    if value.startswith("(") and value.endswith(")"):
        value = value[1:-1]
    names = []
    for name in re.split(r"[\s,]+", value):
        name = name.strip("'\"")
        if name and name not in names:
            names.append(name)
    return tuple(names)


def read_config_file(path) -> dict:
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Unable to load configuration file {path}")
    try:
        values = dotenv_values(path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Unable to load configuration file {path}: {e}") from e
    return {k: v for k, v in values.items() if v is not None}


def collect_values(config_file=None, environ: Optional[Mapping[str, str]] = None) -> dict:
    """Merge environment and configuration file values for the recognized keys."""
    environ = os.environ if environ is None else environ
    values = {k: environ[k] for k in CONFIG_KEYS if k in environ}
    if config_file:
        file_values = read_config_file(config_file)
        values.update({k: v for k, v in file_values.items() if k in CONFIG_KEYS})
    return values


def settings_from_values(values: Mapping[str, str]) -> Settings:
    def path_or_none(key):
        raw = (values.get(key) or "").strip()
        return Path(raw) if raw else None

    def text_or_none(key):
        raw = (values.get(key) or "").strip()
        return raw or None

    kwargs = {
        "jails": parse_jails(values.get("JAILS", "")),
        "blacklist_file": path_or_none("BLACKLIST_FILE"),
        "ipset_blacklist": text_or_none("IPSET_BLACKLIST"),
        "ipset_tmp_blacklist": text_or_none("IPSET_TMP_BLACKLIST"),
        "ipset_restore_file": path_or_none("IPSET_RESTORE_FILE"),
        "log_file": path_or_none("LOG_FILE"),
        "iptables_chain": text_or_none("IPTABLES_CHAIN") or DEFAULT_CHAIN,
    }
    if "LOCK_FILE" in values:
        kwargs["lock_file"] = path_or_none("LOCK_FILE")
    if "CLEANUP" in values:
        kwargs["cleanup"] = parse_bool("CLEANUP", values["CLEANUP"])
    if "QUIET" in values:
        kwargs["quiet"] = parse_bool("QUIET", values["QUIET"])
    if "IPTABLES_IPSET_POSITION" in values:
        kwargs["iptables_position"] = parse_int("IPTABLES_IPSET_POSITION", values["IPTABLES_IPSET_POSITION"])
    if "HASHSIZE" in values:
        kwargs["hashsize"] = parse_int("HASHSIZE", values["HASHSIZE"])
    if "MAXELEM" in values:
        kwargs["maxelem"] = parse_int("MAXELEM", values["MAXELEM"])
    if "COMMAND_TIMEOUT" in values:
        kwargs["command_timeout"] = parse_float("COMMAND_TIMEOUT", values["COMMAND_TIMEOUT"])
    return Settings(**kwargs)


def with_overrides(settings: Settings, **overrides) -> Settings:
    """Apply command-line overrides; ``None`` means the option was not given."""
    given = {k: v for k, v in overrides.items() if v is not None}
    return replace(settings, **given)


def validate(settings: Settings) -> Settings:
    """Raise ConfigurationError for anything that would fail later in the run."""
    if not settings.jails:
        raise ConfigurationError("No jails specified.")

    if settings.ipset_blacklist:
        if not settings.ipset_restore_file:
            raise ConfigurationError("<ipset_blacklist> specified, but <ipset_restore_file> missing.")
        for name in (settings.ipset_blacklist, settings.staging_name):
            if not SET_NAME_RE.match(name):
                raise ConfigurationError(f"Invalid ipset name: {name!r}")
        if settings.staging_name == settings.ipset_blacklist:
            raise ConfigurationError("Temporary ipset blacklist must differ from the live blacklist")

    for key, value in (
        ("HASHSIZE", settings.hashsize),
        ("MAXELEM", settings.maxelem),
        ("IPTABLES_IPSET_POSITION", settings.iptables_position),
        ("COMMAND_TIMEOUT", settings.command_timeout),
    ):
        if value <= 0:
            raise ConfigurationError(f"{key} must be positive, got {value}")
    return settings
