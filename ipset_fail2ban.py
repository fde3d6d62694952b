#!/usr/bin/env python3
"""
Build an ipset blacklist from fail2ban bans and bind it to iptables.

Banned addresses from the configured jails are merged with the persisted
blacklist file, private/reserved ranges are dropped, the result is written
back to the file and swapped atomically into the live ipset. With cleanup
enabled the addresses are then unbanned from the jails that reported them,
since the blacklist now enforces them.

    ipset-fail2ban [CONFIG_FILE] [OPTIONS]
"""
import argparse
import errno
import fcntl
import logging
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

import blacklist_config
from blacklist_errors import BlacklistError, BlacklistIOError, RunLockedError
from blacklist_merge import CanonicalSet, log_summary, merge
from blacklist_sources import SourceBatch, SourceReader, check_blacklist_file, verify_jails
from blacklist_store import persist
from fail2ban_client import Fail2banClient
from ipset_sync import RestoreScript, SetSyncEngine, check_restore_file
from jail_reconcile import JailReconciler, ReconcileReport
from netfilter_clients import IpsetClient, IptablesClient

CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5

logger = logging.getLogger("ipset_fail2ban")
_handlers = []


# ---- Logging setup ----
def configure_logging(quiet: bool = False, verbose: bool = False, log_file: Optional[Path] = None):
    """Console handler plus an optional rotating log file, attached to the root logger."""
    root = logging.getLogger()
    while _handlers:
        h = _handlers.pop()
        root.removeHandler(h)
        h.close()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    console.setLevel(logging.WARNING if quiet else (logging.DEBUG if verbose else logging.INFO))
    root.addHandler(console)
    _handlers.append(console)

    if log_file is None:
        return
    try:
        file_handler = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)
        _handlers.append(file_handler)
    except PermissionError:
        logger.warning(f"Permission denied opening {log_file}. Logging to console only.")
    except OSError as e:
        logger.warning(f"Failed to set up file logging: {e}. Console only.")


# ---- Signals ----
def handle_sigterm(signum, frame):
    logger.info("Received SIGTERM, exiting.")
    sys.exit(1)


# ---- Run lock ----
@contextmanager
def run_lock(path: Optional[Path]):
    """Exclusive, non-blocking lock so two runs never race on the file or the ipset."""
    if path is None:
        yield
        return
    try:
        fp = open(path, "a")
    except OSError as e:
        raise BlacklistIOError(f"Unable to open lock file {path}: {e}") from e
    try:
        fcntl.lockf(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        fp.close()
        if e.errno in (errno.EAGAIN, errno.EACCES):
            raise RunLockedError(f"Another run holds the lock {path}") from None
        raise BlacklistIOError(f"Unable to lock {path}: {e}") from e
    try:
        yield
    finally:
        fcntl.lockf(fp.fileno(), fcntl.LOCK_UN)
        fp.close()


# ---- Pipeline ----
@dataclass
class RunResult:
    batches: List[SourceBatch]
    canonical: CanonicalSet
    script: Optional[RestoreScript] = None
    report: Optional[ReconcileReport] = None


def preflight(settings, tracker) -> None:
    """Everything that can fail before state is touched. Jails are checked first."""
    verify_jails(tracker, settings.jails)
    check_blacklist_file(settings.blacklist_file)
    if settings.enforcement_enabled:
        check_restore_file(settings.ipset_restore_file)


def run(settings, tracker, ipset=None, iptables=None, stream=None) -> RunResult:
    preflight(settings, tracker)

    logger.info("Gathering banned IP addresses...")
    batches = SourceReader(settings, tracker).read()
    canonical = merge(batches)
    log_summary(canonical)

    # the file is the recovery point, so it is committed before the ipset is touched
    persist(settings.blacklist_file, canonical.addresses(), quiet=settings.quiet, stream=stream)
    result = RunResult(batches=batches, canonical=canonical)

    if not settings.enforcement_enabled:
        if settings.cleanup:
            logger.warning("Cleanup requested but no ipset blacklist configured; leaving jails untouched.")
        logger.info(f"Total number of IP addresses in blacklist: {len(canonical)}")
        return result

    result.script = SetSyncEngine(settings, ipset, iptables).sync(canonical.addresses())

    if settings.cleanup and len(canonical):
        result.report = JailReconciler(tracker).reconcile(batches)
        if result.report.warnings:
            logger.warning(f"{len(result.report.warnings)} unban requests failed")

    logger.info(f"Total number of IP addresses in blacklist: {len(canonical)}")
    return result


# ---- CLI ----
def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ipset-fail2ban",
        description="Create an ipset blacklist from fail2ban banned IPs and add it to iptables.",
    )
    ap.add_argument("config", nargs="?", help="Configuration file (KEY=value). Options override it.")
    ap.add_argument("-b", "--blacklist-file", type=Path, help="Blacklist file to merge into and rewrite.")
    ap.add_argument("-i", "--ipset-blacklist", help="Name of the ipset blacklist.")
    ap.add_argument("-j", "--jail", dest="jails", help="Comma separated list of jails.")
    ap.add_argument("-r", "--ipset-restore-file", type=Path, help="File for the ipset restore script.")
    ap.add_argument("-t", "--ipset-tmp-blacklist", help="Temporary ipset for the swap (default <ipset_blacklist>-tmp).")
    ap.add_argument("-c", "--cleanup", dest="cleanup", action="store_const", const=True,
                    help="Unban blacklisted IPs from the jails they came from.")
    ap.add_argument("-nc", "--no-cleanup", dest="cleanup", action="store_const", const=False,
                    help="Leave fail2ban jails untouched (default).")
    ap.add_argument("-q", "--quiet", action="store_const", const=True, help="Only show warnings and errors.")
    ap.add_argument("-v", "--verbose", action="store_const", const=True, help="Debug logging.")
    ap.add_argument("--log-file", type=Path, help="Also log to this file (rotated).")
    ap.add_argument("--lock-file", type=Path, help="Lock file guarding against overlapping runs.")
    return ap


def load_settings(args) -> blacklist_config.Settings:
    values = blacklist_config.collect_values(args.config)
    settings = blacklist_config.settings_from_values(values)
    settings = blacklist_config.with_overrides(
        settings,
        blacklist_file=args.blacklist_file,
        ipset_blacklist=args.ipset_blacklist,
        ipset_tmp_blacklist=args.ipset_tmp_blacklist,
        ipset_restore_file=args.ipset_restore_file,
        jails=blacklist_config.parse_jails(args.jails) if args.jails is not None else None,
        cleanup=args.cleanup,
        quiet=args.quiet,
        verbose=args.verbose,
        log_file=args.log_file,
        lock_file=args.lock_file,
    )
    return blacklist_config.validate(settings)


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    if not argv:
        parser.print_usage(sys.stderr)
        print("Error: No configuration file or options given. Use -h or --help for help.", file=sys.stderr)
        return 1
    args = parser.parse_args(argv)

    try:
        signal.signal(signal.SIGTERM, handle_sigterm)
    except ValueError as e:
        logger.debug(f"Unable to register signal handler: {e}")

    try:
        settings = load_settings(args)
    except BlacklistError as e:
        configure_logging()
        logger.error(f"Error: {e}")
        return e.exit_code

    configure_logging(settings.quiet, settings.verbose, settings.log_file)
    timeout = settings.command_timeout
    try:
        with run_lock(settings.lock_file):
            run(
                settings,
                Fail2banClient(timeout=timeout),
                IpsetClient(timeout=timeout),
                IptablesClient(timeout=timeout),
            )
    except BlacklistError as e:
        logger.error(f"Error: {e}")
        return e.exit_code
    return 0


def cli():
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Shutdown (KeyboardInterrupt).")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
