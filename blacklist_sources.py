"""
Source Reader: collects raw entries from the persisted blacklist file and
from every configured fail2ban jail, after verifying the jails exist.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from blacklist_errors import BlacklistIOError, ConfigurationError
from blacklist_filter import extract_tokens
from fail2ban_client import Fail2banError

logger = logging.getLogger(__name__)

PERSISTED_ORIGIN = "persisted-file"


@dataclass(frozen=True)
class SourceBatch:
    origin: str
    entries: Tuple[str, ...]

    @property
    def is_jail(self) -> bool:
        return self.origin != PERSISTED_ORIGIN

    def __len__(self):
        return len(self.entries)


def verify_jails(tracker, jails: Sequence[str]) -> Tuple[str, ...]:
    """Check every configured jail against the tracker's jail list.

    Runs before any read or unban so that a bad name aborts with nothing touched.
    """
    if not jails:
        raise ConfigurationError("No jails specified.")
    if PERSISTED_ORIGIN in jails:
        raise ConfigurationError(f"Jail name {PERSISTED_ORIGIN!r} is reserved for the blacklist file.")
    try:
        known = set(tracker.jails())
    except Fail2banError as e:
        raise ConfigurationError(f"Unable to run 'fail2ban-client status': {e}") from e
    for jail in jails:
        if jail not in known:
            raise ConfigurationError(f"Could not find jail in 'fail2ban-client status': {jail}")
    return tuple(jails)


def check_blacklist_file(path: Optional[Path]) -> None:
    """Make sure the persisted file is a readable, writable regular file; create it if missing."""
    if path is None:
        return
    if path.exists():
        if not path.is_file():
            raise BlacklistIOError(f"Invalid file {path}")
        if not os.access(path, os.R_OK):
            raise BlacklistIOError(f"Unable to read {path}")
        if not os.access(path, os.W_OK):
            raise BlacklistIOError(f"Unable to write to {path}")
        return
    try:
        path.touch()
    except OSError as e:
        raise BlacklistIOError(f"Unable to create {path}: {e}") from e


def read_persisted(path: Optional[Path]) -> SourceBatch:
    """Every IPv4/CIDR token in the file; a missing or empty file is an empty batch."""
    if path is None or not path.exists() or path.stat().st_size == 0:
        return SourceBatch(PERSISTED_ORIGIN, ())
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            entries = [tok for line in f for tok in extract_tokens(line)]
    except PermissionError:
        raise BlacklistIOError(f"Unable to read {path}") from None
    except OSError as e:
        raise BlacklistIOError(f"OS error reading {path}: {e}") from e
    return SourceBatch(PERSISTED_ORIGIN, tuple(entries))


def read_jail(tracker, jail: str) -> SourceBatch:
    try:
        entries = tracker.banned(jail)
    except Fail2banError as e:
        raise BlacklistIOError(f"Unable to read banned IPs of jail {jail}: {e}") from e
    return SourceBatch(jail, tuple(entries))


class SourceReader:
    def __init__(self, settings, tracker):
        self.settings = settings
        self.tracker = tracker

    def read(self) -> List[SourceBatch]:
        """One batch for the persisted file (when configured) and one per jail, in configuration order."""
        batches = []
        path = self.settings.blacklist_file
        if path is not None:
            batch = read_persisted(path)
            logger.info(f"    + {len(batch):6d} IPs from {path}")
            batches.append(batch)
        for jail in self.settings.jails:
            batch = read_jail(self.tracker, jail)
            logger.info(f"    + {len(batch):6d} IPs from {jail}")
            batches.append(batch)
        return batches
