"""
Jail Reconciler: once the blacklist has taken over, hand the bans back from
fail2ban by unbanning what each jail contributed in this run.

The raw jail batch is used, not the filtered set, so entries the filter
dropped are unbanned too. Each unban is independent; failures are collected
as warnings and never stop the loop.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from blacklist_errors import BlacklistError, ReconciliationWarning

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    unbanned: List[tuple] = field(default_factory=list)
    warnings: List[ReconciliationWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings


class JailReconciler:
    def __init__(self, tracker):
        self.tracker = tracker

    def reconcile(self, batches: Iterable) -> ReconcileReport:
        report = ReconcileReport()
        for batch in batches:
            if not batch.is_jail:
                continue
            targets = [ip for ip in batch.entries if ip]
            logger.info(f"Removing {len(targets)} banned IPs from fail2ban jail {batch.origin}...")
            for ip in targets:
                logger.debug(f"    > fail2ban-client set {batch.origin} unbanip {ip}")
                try:
                    self.tracker.unban(batch.origin, ip)
                except BlacklistError as e:
                    warning = ReconciliationWarning(batch.origin, ip, str(e))
                    logger.warning(str(warning))
                    report.warnings.append(warning)
                    continue
                report.unbanned.append((batch.origin, ip))
        return report
