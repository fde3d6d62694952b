"""
Set Sync Engine.

The live ipset is never edited in place. Every run regenerates a full restore
script that

    create <live>    (idempotent, -exist)
    create <staging> (idempotent, -exist)
    flush  <staging>
    add    <staging> <entry>   ...
    swap   <live> <staging>
    destroy <staging>

and hands it to a single ``ipset restore``. The swap is the only command that
touches the live set's contents, so a lookup sees either the whole old list
or the whole new one. The same file rebuilds the blacklist from nothing
(e.g. from a boot-time unit) because it never depends on prior state.
"""
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Tuple

from blacklist_errors import BlacklistIOError, EnforcementError
from netfilter_clients import create_args

logger = logging.getLogger(__name__)


class SyncState(enum.Enum):
    """Per-command progress of a restore script; all of it happens inside one ``ipset restore``."""

    ABSENT = "absent"
    CREATED = "created"
    POPULATED = "populated"
    SWAPPED = "swapped"
    CLEANED = "cleaned"


_ORDER = list(SyncState)


@dataclass(frozen=True)
class EnforcementHandle:
    live: str
    staging: str


@dataclass(frozen=True)
class RestoreCommand:
    verb: str
    args: Tuple[str, ...]
    # state the set pair is in once this command has run
    state: SyncState

    def render(self) -> str:
        return " ".join((self.verb,) + self.args)


class RestoreScript:
    def __init__(self, handle: EnforcementHandle, commands: List[RestoreCommand]):
        self.handle = handle
        self.commands = commands

    @classmethod
    def build(cls, handle: EnforcementHandle, entries: Iterable[str], hashsize: int, maxelem: int):
        live, staging = handle.live, handle.staging
        commands = [
            RestoreCommand("create", tuple(create_args(live, hashsize, maxelem)), SyncState.CREATED),
            RestoreCommand("create", tuple(create_args(staging, hashsize, maxelem)), SyncState.CREATED),
            RestoreCommand("flush", (staging,), SyncState.CREATED),
        ]
        commands += [RestoreCommand("add", (staging, entry), SyncState.POPULATED) for entry in entries]
        commands += [
            RestoreCommand("swap", (live, staging), SyncState.SWAPPED),
            RestoreCommand("destroy", (staging,), SyncState.CLEANED),
        ]
        return cls(handle, commands)

    def __len__(self):
        return len(self.commands)

    def render(self) -> str:
        return "".join(f"{c.render()}\n" for c in self.commands)

    def entries(self) -> List[str]:
        return [c.args[1] for c in self.commands if c.verb == "add"]

    def verify(self) -> None:
        """Raise EnforcementError unless the script swaps the live set in exactly once.

        Checks that states only move forward, that nothing but ``create -exist``
        and the single ``swap`` names the live set, and that the swap comes
        straight after population and is followed only by the staging destroy.
        """
        live, staging = self.handle.live, self.handle.staging
        positions = [_ORDER.index(c.state) for c in self.commands]
        if positions != sorted(positions):
            raise EnforcementError("Restore script commands are out of order")

        swaps = [i for i, c in enumerate(self.commands) if c.verb == "swap"]
        if len(swaps) != 1 or self.commands[swaps[0]].args != (live, staging):
            raise EnforcementError(f"Restore script must swap {live} and {staging} exactly once")
        swap_at = swaps[0]

        for c in self.commands[:swap_at]:
            if c.verb in ("add", "flush", "destroy") and c.args[0] != staging:
                raise EnforcementError(f"Restore script modifies {c.args[0]} before the swap")
        if self.commands[swap_at + 1:] != [RestoreCommand("destroy", (staging,), SyncState.CLEANED)]:
            raise EnforcementError("Restore script must end by destroying the staging set")

    def write(self, path: Path) -> None:
        """Overwrite ``path`` with the full script (never appended to)."""
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.render())
        except OSError as e:
            raise EnforcementError(f"Unable to write ipset restore file {path}: {e}") from e


def check_restore_file(path: Path) -> None:
    try:
        path.touch()
    except OSError as e:
        raise BlacklistIOError(f"Unable to write to {path}: {e}") from e


class SetSyncEngine:
    def __init__(self, settings, ipset, iptables):
        self.settings = settings
        self.ipset = ipset
        self.iptables = iptables
        self.handle = EnforcementHandle(settings.ipset_blacklist, settings.staging_name)

    def ensure_live_set(self) -> bool:
        """Create the live set if missing. Returns True if it had to be created."""
        live = self.handle.live
        if live in self.ipset.list_names():
            return False
        logger.info(f"Creating ipset blacklist {live}...")
        try:
            self.ipset.create(live, self.settings.hashsize, self.settings.maxelem)
        except EnforcementError as e:
            raise EnforcementError(f"Unable to create blacklist {live}: {e}") from e
        return True

    def ensure_rule(self) -> bool:
        """Bind the live set to a DROP rule once. Returns True if the rule was inserted."""
        chain, live = self.settings.iptables_chain, self.handle.live
        if self.iptables.has_drop_rule(chain, live):
            logger.debug(f"iptables rule for --match-set {live} already present in {chain}")
            return False
        logger.info(f"Creating iptables rule for ipset blacklist {live}...")
        try:
            self.iptables.insert_drop_rule(chain, self.settings.iptables_position, live)
        except EnforcementError as e:
            raise EnforcementError(f"Unable to create iptables rule for --match-set {live}: {e}") from e
        return True

    def build_script(self, entries: Iterable[str]) -> RestoreScript:
        script = RestoreScript.build(self.handle, entries, self.settings.hashsize, self.settings.maxelem)
        script.verify()
        return script

    def sync(self, entries: Iterable[str]) -> RestoreScript:
        """Run the whole create -> populate -> swap -> destroy sequence."""
        self.ensure_live_set()
        self.ensure_rule()

        path = self.settings.ipset_restore_file
        script = self.build_script(entries)
        logger.info(f"Creating ipset restore file {path}...")
        script.write(path)

        logger.info(f"Restoring ipset blacklist {self.handle.live}...")
        try:
            self.ipset.restore(path)
        except EnforcementError as e:
            raise EnforcementError(f"Unable to restore blacklist from ipset restore file {path}: {e}") from e
        return script
