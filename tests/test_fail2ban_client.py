import subprocess

import pytest

import blacklist_commands
from fail2ban_client import Fail2banClient, Fail2banError, parse_banned_ips, parse_jail_list

STATUS_OUTPUT = """Status
|- Number of jail:\t3
`- Jail list:\tnginx-http-auth, recidive, sshd
"""

JAIL_STATUS_OUTPUT = """Status for the jail: sshd
|- Filter
|  |- Currently failed:\t1
|  |- Total failed:\t42
|  `- File list:\t/var/log/auth.log
`- Actions
   |- Currently banned:\t3
   |- Total banned:\t17
   `- Banned IP list:\t1.2.3.4 5.6.7.8   10.0.0.5
"""

EMPTY_JAIL_OUTPUT = """Status for the jail: recidive
|- Filter
|  |- Currently failed:\t0
|  |- Total failed:\t0
|  `- File list:\t/var/log/fail2ban.log
`- Actions
   |- Currently banned:\t0
   |- Total banned:\t0
   `- Banned IP list:\t
"""


def test_parse_jail_list():
    assert parse_jail_list(STATUS_OUTPUT) == ("nginx-http-auth", "recidive", "sshd")


def test_parse_jail_list_without_jails():
    assert parse_jail_list("Status\n|- Number of jail:\t0\n`- Jail list:\t\n") == ()
    assert parse_jail_list("") == ()


def test_parse_banned_ips():
    assert parse_banned_ips(JAIL_STATUS_OUTPUT) == ["1.2.3.4", "5.6.7.8", "10.0.0.5"]


def test_parse_banned_ips_empty():
    assert parse_banned_ips(EMPTY_JAIL_OUTPUT) == []
    assert parse_banned_ips("Sorry but the jail 'x' does not exist") == []


class Recorder:
    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append(args)
        return subprocess.CompletedProcess(args, 0, stdout=self.outputs.get(tuple(args[1:]), ""), stderr="")


def test_client_builds_argument_lists(monkeypatch):
    recorder = Recorder({("status",): STATUS_OUTPUT, ("status", "sshd"): JAIL_STATUS_OUTPUT})
    monkeypatch.setattr(blacklist_commands.subprocess, "run", recorder)
    client = Fail2banClient(binary="fail2ban-client", timeout=5)

    assert client.jails() == ("nginx-http-auth", "recidive", "sshd")
    assert client.banned("sshd") == ["1.2.3.4", "5.6.7.8", "10.0.0.5"]
    client.unban("sshd", "1.2.3.4")

    assert recorder.calls == [
        ["fail2ban-client", "status"],
        ["fail2ban-client", "status", "sshd"],
        ["fail2ban-client", "set", "sshd", "unbanip", "1.2.3.4"],
    ]


def test_client_failure_raises_fail2ban_error(monkeypatch):
    def fail(args, **kwargs):
        raise subprocess.CalledProcessError(255, args, output="", stderr="Permission denied to socket")

    monkeypatch.setattr(blacklist_commands.subprocess, "run", fail)

    with pytest.raises(Fail2banError, match="Permission denied to socket"):
        Fail2banClient().unban("sshd", "1.2.3.4")


def test_missing_binary(monkeypatch):
    def missing(args, **kwargs):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(blacklist_commands.subprocess, "run", missing)

    with pytest.raises(Fail2banError, match="binary not found"):
        Fail2banClient(binary="/nonexistent/fail2ban-client").jails()


def test_timeout(monkeypatch):
    def slow(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr(blacklist_commands.subprocess, "run", slow)

    with pytest.raises(Fail2banError, match="Timed out"):
        Fail2banClient(timeout=0.5).banned("sshd")
