"""Clients for the ``ipset`` and ``iptables`` binaries."""
import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from blacklist_commands import run_command
from blacklist_errors import EnforcementError

logger = logging.getLogger(__name__)

# system binaries (prefer sbin paths when present)
IPSET = "/usr/sbin/ipset" if os.path.exists("/usr/sbin/ipset") else "ipset"
IPTABLES = "/usr/sbin/iptables" if os.path.exists("/usr/sbin/iptables") else "iptables"

SET_TYPE = "hash:net"
SET_FAMILY = "inet"


def create_args(name: str, hashsize: int, maxelem: int) -> List[str]:
    """Arguments of an idempotent ``create`` (shared by the CLI call and restore scripts)."""
    return [name, SET_TYPE, "family", SET_FAMILY, "hashsize", str(hashsize), "maxelem", str(maxelem), "-exist"]


class IpsetClient:
    def __init__(self, binary: str = IPSET, timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout

    def _run(self, *args: str, input_text: Optional[str] = None) -> str:
        return run_command([self.binary, *args], EnforcementError, timeout=self.timeout, input_text=input_text)

    def list_names(self) -> Tuple[str, ...]:
        return tuple(ln.strip() for ln in self._run("list", "-n").splitlines() if ln.strip())

    def create(self, name: str, hashsize: int, maxelem: int) -> None:
        self._run("create", *create_args(name, hashsize, maxelem))

    def add(self, name: str, address: str) -> None:
        self._run("add", name, address)

    def swap(self, name_a: str, name_b: str) -> None:
        self._run("swap", name_a, name_b)

    def destroy(self, name: str) -> None:
        self._run("destroy", name)

    def restore(self, script_path: Path) -> None:
        """Apply a restore script as one ``ipset restore`` invocation."""
        self._run("-file", str(script_path), "restore")


def parse_match_set_drops(rules: Iterable[str]) -> List[str]:
    """
    Set names referenced by ``--match-set <set> src -j DROP`` in ``iptables -S`` output:

        -A INPUT -m set --match-set blacklist src -j DROP
    """
    names = []
    for rule in rules:
        tokens = rule.split()
        if "--match-set" not in tokens:
            continue
        i = tokens.index("--match-set")
        if i + 2 >= len(tokens) or tokens[i + 2] != "src":
            continue
        target = tokens[tokens.index("-j") + 1:] if "-j" in tokens else []
        if target[:1] != ["DROP"]:
            continue
        names.append(tokens[i + 1])
    return names


class IptablesClient:
    def __init__(self, binary: str = IPTABLES, timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        return run_command([self.binary, *args], EnforcementError, timeout=self.timeout)

    def rules(self, chain: str) -> List[str]:
        return self._run("-S", chain).splitlines()

    def has_drop_rule(self, chain: str, set_name: str) -> bool:
        return set_name in parse_match_set_drops(self.rules(chain))

    def insert_drop_rule(self, chain: str, position: int, set_name: str) -> None:
        self._run("-I", chain, str(position), "-m", "set", "--match-set", set_name, "src", "-j", "DROP")
