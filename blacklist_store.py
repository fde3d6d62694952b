"""Persistence Writer: the blacklist file is one canonical entry per line."""
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from blacklist_errors import BlacklistIOError

logger = logging.getLogger(__name__)


def render(entries: Iterable[str]) -> str:
    return "".join(f"{entry}\n" for entry in entries)


def write_blacklist(path: Path, entries: Iterable[str]) -> int:
    """Overwrite ``path`` with ``entries``. Returns the number of lines written."""
    entries = list(entries)
    logger.info(f"Writing {len(entries)} unique IP addresses to {path}...")
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(render(entries))
    except PermissionError:
        raise BlacklistIOError(f"Permission denied writing {path}") from None
    except FileNotFoundError:
        raise BlacklistIOError(f"{path} path not found when writing blacklist") from None
    except OSError as e:
        raise BlacklistIOError(f"OS error writing {path}: {e}") from e
    return len(entries)


def persist(path: Optional[Path], entries: Iterable[str], quiet: bool = False, stream=None) -> None:
    """Write the blacklist file, or print the list when no file is configured."""
    if path is not None:
        write_blacklist(path, entries)
        return
    if quiet:
        return
    stream = stream or sys.stdout
    stream.write(render(entries))
    stream.flush()
