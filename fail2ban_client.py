"""
Thin client around ``fail2ban-client``.

fail2ban only offers text output, so the parsing lives in two small pure
functions (``parse_jail_list`` / ``parse_banned_ips``) that are tested
against captured sample outputs.
"""
import logging
import re
from typing import List, Tuple

from blacklist_commands import run_command
from blacklist_errors import BlacklistIOError

logger = logging.getLogger(__name__)

FAIL2BAN_CLIENT = "fail2ban-client"

# ---- Regex patterns for parsing fail2ban-client status output ----
JAIL_LIST_RE = re.compile(r"Jail list:[ \t]*(?P<jails>.*)$", re.MULTILINE)
BANNED_LIST_RE = re.compile(r"Banned IP list:[ \t]*(?P<ips>.*)$", re.MULTILINE)


class Fail2banError(BlacklistIOError):
    pass


def parse_jail_list(output: str) -> Tuple[str, ...]:
    """
    Extract jail names from ``fail2ban-client status``:

        Status
        |- Number of jail:      2
        `- Jail list:   recidive, sshd
    """
    m = JAIL_LIST_RE.search(output)
    if not m:
        return ()
    return tuple(j for j in re.split(r"[,\s]+", m.group("jails").strip()) if j)


def parse_banned_ips(output: str) -> List[str]:
    """Raw tokens of the ``Banned IP list:`` line of ``fail2ban-client status <jail>``."""
    m = BANNED_LIST_RE.search(output)
    if not m:
        return []
    return m.group("ips").split()


class Fail2banClient:
    def __init__(self, binary: str = FAIL2BAN_CLIENT, timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        return run_command([self.binary, *args], Fail2banError, timeout=self.timeout)

    def jails(self) -> Tuple[str, ...]:
        return parse_jail_list(self._run("status"))

    def banned(self, jail: str) -> List[str]:
        output = self._run("status", jail)
        ips = parse_banned_ips(output)
        if not ips and "Banned IP list" not in output:
            logger.debug(f"No 'Banned IP list' line in status output for jail {jail}")
        return ips

    def unban(self, jail: str, address: str) -> None:
        self._run("set", jail, "unbanip", address)
