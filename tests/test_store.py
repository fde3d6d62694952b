import io

import pytest

from blacklist_errors import BlacklistIOError
from blacklist_store import persist, write_blacklist


def test_write_blacklist_overwrites(tmp_path):
    path = tmp_path / "blacklist"
    path.write_text("9.9.9.9\n8.8.8.8\n")

    assert write_blacklist(path, ["1.2.3.4", "5.6.7.0/24"]) == 2
    assert path.read_text() == "1.2.3.4\n5.6.7.0/24\n"


def test_write_empty_blacklist(tmp_path):
    path = tmp_path / "blacklist"
    path.write_text("9.9.9.9\n")

    write_blacklist(path, [])

    assert path.read_text() == ""


def test_write_failure_is_fatal(tmp_path):
    with pytest.raises(BlacklistIOError):
        write_blacklist(tmp_path / "missing-dir" / "blacklist", ["1.2.3.4"])


def test_persist_without_file_prints():
    out = io.StringIO()
    persist(None, ["1.2.3.4", "5.6.7.8"], stream=out)
    assert out.getvalue() == "1.2.3.4\n5.6.7.8\n"


def test_persist_quiet_without_file_prints_nothing():
    out = io.StringIO()
    persist(None, ["1.2.3.4"], quiet=True, stream=out)
    assert out.getvalue() == ""
