"""
countryblock.pipeline
~~~~~~~~~~~~~~~~~~~~~

One block-list run: source document → freshness gate → snapshot store →
batching planner → target applier, once per address family.

Per-family states::

    idle → fetched → skipped
                   → staged → planned → applied | partially_applied
    (failed: snapshot I/O or target unavailable)

Families are processed one after the other (ipv4 then ipv6) and never
share counters or store keys; a failure in one does not stop the other.
Source errors abort the whole run since no family can proceed without
data.
"""

from __future__ import annotations

import logging
from typing import List

from countryblock import planner
from countryblock.config import Settings
from countryblock.defense.base import Applier
from countryblock.errors import SnapshotIOError, TargetApplyError, TargetUnavailable
from countryblock.fetchers import ripe
from countryblock.freshness import should_update
from countryblock.models import Family, FamilyReport, FamilyState, SourceDocument
from countryblock.naming import NamingContext
from countryblock.snapshot import SnapshotStore

logger = logging.getLogger(__name__)

FAMILIES = (Family.IPV4, Family.IPV6)


class Pipeline:
    def __init__(
        self,
        store: SnapshotStore,
        applier: Applier,
        *,
        force: bool = False,
    ) -> None:
        self.store = store
        self.applier = applier
        self.force = force

    def run(self, document: SourceDocument) -> List[FamilyReport]:
        return [self.process(document, family) for family in FAMILIES]

    def _fail(self, report: FamilyReport, state: FamilyState, exc: Exception) -> FamilyReport:
        report.state = state
        report.errors.append(str(exc))
        logger.error("%s %s %s: %s", report.country_code, report.family.value, state.value, exc)
        logger.debug("Failure detail", exc_info=exc)
        return report

    def _invalidate(self, report: FamilyReport) -> None:
        try:
            self.store.invalidate(report.country_code, report.family)
        except SnapshotIOError as exc:
            report.errors.append(str(exc))
            logger.error("%s", exc)

    def process(self, document: SourceDocument, family: Family) -> FamilyReport:
        family = Family(family)
        cc = document.country_code
        report = FamilyReport(country_code=cc, family=family)

        prefix_set = document.prefix_set(family)
        report.prefix_count = len(prefix_set)
        report.state = FamilyState.FETCHED

        try:
            snapshot = self.store.read(cc, family)
        except SnapshotIOError as exc:
            return self._fail(report, FamilyState.FAILED, exc)

        last_applied = snapshot.generated_at if snapshot else None
        if not should_update(prefix_set.generated_at, last_applied, self.force):
            report.state = FamilyState.SKIPPED
            logger.info(
                "Source for %s %s (%s) is not newer than %s (%s), not updating",
                cc,
                family.value,
                prefix_set.generated_at.isoformat(),
                self.store.path(cc, family),
                last_applied.isoformat() if last_applied else "-",
            )
            return report

        try:
            self.store.write(prefix_set)
        except SnapshotIOError as exc:
            return self._fail(report, FamilyState.FAILED, exc)
        report.state = FamilyState.STAGED

        try:
            previous = self.applier.current_batch_count(cc, family)
            plan = planner.plan(
                prefix_set.prefixes,
                self.applier.batch_size(len(prefix_set)),
                NamingContext(cc, family.value),
                previous_batch_count=previous,
            )
            report.batch_count = plan.batch_count
            report.state = FamilyState.PLANNED
            result = self.applier.reconcile(cc, family, plan)
        except TargetUnavailable as exc:
            self._fail(report, FamilyState.FAILED, exc)
            self._invalidate(report)
            return report
        except TargetApplyError as exc:
            self._fail(report, FamilyState.PARTIALLY_APPLIED, exc)
            self._invalidate(report)
            return report

        if not result.complete:
            report.state = FamilyState.PARTIALLY_APPLIED
            report.errors.extend(result.errors)
            self._invalidate(report)
            return report

        report.state = FamilyState.APPLIED
        logger.info(
            "%s %s applied via %s: %d prefixes in %d batch(es)",
            cc,
            family.value,
            self.applier.name,
            report.prefix_count,
            report.batch_count,
        )
        return report


def run_once(settings: Settings, applier: Applier, store: SnapshotStore | None = None) -> List[FamilyReport]:
    """
    Fetch the source document for ``settings.country_code`` and apply it.

    Source errors propagate to the caller; per-family errors are folded
    into the returned reports.
    """
    if not settings.country_code:
        raise ValueError("country_code is required")
    document = ripe.get(settings.country_code, settings)
    pipeline = Pipeline(
        store or SnapshotStore(settings.data_dir),
        applier,
        force=settings.force_update,
    )
    return pipeline.run(document)
