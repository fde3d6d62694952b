"""Error types shared by every stage of a blacklist run."""
from dataclasses import dataclass


class BlacklistError(Exception):
    """Fatal error: the run stops and the process exits with ``exit_code``."""

    exit_code = 1


class ConfigurationError(BlacklistError):
    exit_code = 2


class BlacklistIOError(BlacklistError):
    exit_code = 3


class EnforcementError(BlacklistError):
    exit_code = 4


class RunLockedError(BlacklistError):
    exit_code = 5


@dataclass(frozen=True)
class ReconciliationWarning:
    """A single unban that did not go through. Collected, never raised."""

    jail: str
    address: str
    reason: str

    def __str__(self):
        return f"Unable to unban {self.address} from fail2ban jail {self.jail}: {self.reason}"
