import logging
from pathlib import Path

import pytest

import ipset_fail2ban
from blacklist_config import CONFIG_KEYS, Settings
from blacklist_errors import EnforcementError
from fail2ban_client import Fail2banError


class FakeTracker:
    """In-memory stand-in for fail2ban-client."""

    def __init__(self, jails=None, failing_unbans=(), broken=False):
        self.bans = {name: list(ips) for name, ips in (jails or {}).items()}
        self.failing_unbans = set(failing_unbans)
        self.broken = broken
        self.banned_calls = []
        self.unbans = []

    def jails(self):
        if self.broken:
            raise Fail2banError("fail2ban-client binary not found")
        return tuple(sorted(self.bans))

    def banned(self, jail):
        self.banned_calls.append(jail)
        return list(self.bans[jail])

    def unban(self, jail, address):
        if (jail, address) in self.failing_unbans:
            raise Fail2banError(f"IP {address} is not banned")
        self.unbans.append((jail, address))


class FakeIpset:
    """Applies restore scripts to in-memory sets and records what the live set looked like."""

    def __init__(self, sets=None, fail_create=False, fail_restore=False, watch="blacklist"):
        self.sets = {name: set(members) for name, members in (sets or {}).items()}
        self.fail_create = fail_create
        self.fail_restore = fail_restore
        self.watch = watch
        self.created = []
        self.restored = []
        self.observed = []

    def list_names(self):
        return tuple(self.sets)

    def create(self, name, hashsize, maxelem):
        if self.fail_create:
            raise EnforcementError("ipset: Kernel error received")
        self.created.append((name, hashsize, maxelem))
        self.sets.setdefault(name, set())

    def restore(self, script_path):
        if self.fail_restore:
            raise EnforcementError("ipset v7.15: Error in line 3")
        text = Path(script_path).read_text()
        self.restored.append(text)
        for line in text.splitlines():
            verb, *args = line.split()
            if verb == "create":
                self.sets.setdefault(args[0], set())
            elif verb == "flush":
                self.sets[args[0]].clear()
            elif verb == "add":
                self.sets[args[0]].add(args[1])
            elif verb == "swap":
                a, b = args
                self.sets[a], self.sets[b] = self.sets[b], self.sets[a]
            elif verb == "destroy":
                del self.sets[args[0]]
            self.observed.append(frozenset(self.sets.get(self.watch, ())))


class FakeIptables:
    def __init__(self, rules=None, fail_insert=False):
        self.rules = list(rules or [])
        self.fail_insert = fail_insert
        self.inserted = []

    def has_drop_rule(self, chain, set_name):
        return (chain, set_name) in self.rules

    def insert_drop_rule(self, chain, position, set_name):
        if self.fail_insert:
            raise EnforcementError("iptables: Index of insertion too big.")
        self.inserted.append((chain, position, set_name))
        self.rules.append((chain, set_name))


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    root = logging.getLogger()
    while ipset_fail2ban._handlers:
        h = ipset_fail2ban._handlers.pop()
        root.removeHandler(h)
        h.close()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = dict(
            jails=("sshd",),
            blacklist_file=tmp_path / "ip-blacklist.list",
            ipset_blacklist="blacklist",
            ipset_restore_file=tmp_path / "ip-blacklist.restore",
            lock_file=None,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def tracker():
    return FakeTracker({"sshd": ["1.2.3.4", "5.6.7.8"], "recidive": ["9.9.9.9"]})


@pytest.fixture
def ipset():
    return FakeIpset()


@pytest.fixture
def iptables():
    return FakeIptables()
