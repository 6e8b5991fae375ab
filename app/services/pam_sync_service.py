"""Weekly task sheet synchronization.

A sync run goes through these steps:

1. in-flight guard: a second run for an organization that already has one
   running is ignored (``IN_PROGRESS``);
2. throttle: non-forced runs within ``PAM_MIN_SYNC_INTERVAL_SECONDS`` of the
   last attempt do nothing (``THROTTLED``);
3. fetch and fingerprint: an unchanged document is skipped unless forced
   (``UNCHANGED``);
4. parse, validate under ``PAM_IMPORT_POLICY``, optionally keep one week;
5. reconcile every period in one transaction (``IMPORTED``).

Any pipeline failure becomes a ``FAILED`` result and leaves the stored
fingerprint untouched so the next eligible run tries again.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import PamImportError
from app.integrations.google_sheet import DocumentSource, HttpSheetSource, StaticDocumentSource
from app.middleware.metrics import (
    pam_sync_duration_seconds,
    pam_sync_runs_total,
    pam_tasks_imported_total,
)
from app.models.sync_state import PamSyncState
from app.services.pam_row_validator import RowError, validate_sheet
from app.services.pam_sheet_parser import parse_sheet
from app.services.period_reconciler import period_reconciler

logger = logging.getLogger(__name__)

UPLOAD_SOURCE_LABEL = "Manual upload"


class SyncStatus(str, Enum):
    THROTTLED = "THROTTLED"
    UNCHANGED = "UNCHANGED"
    IN_PROGRESS = "IN_PROGRESS"
    NO_MATCHING_ROWS = "NO_MATCHING_ROWS"
    IMPORTED = "IMPORTED"
    FAILED = "FAILED"


class ImportPolicy(str, Enum):
    PARTIAL = "partial"
    STRICT = "strict"


@dataclass(frozen=True)
class Manual:
    """User-initiated sync; the only trigger allowed to bypass throttle and fingerprint."""

    force: bool = False
    name: str = "manual"


@dataclass(frozen=True)
class Scheduled:
    interval_seconds: int
    name: str = "scheduled"


@dataclass(frozen=True)
class OnExternalEvent:
    """Sync requested by something outside the engine, e.g. a client regaining focus."""

    name: str


SyncTrigger = Union[Manual, Scheduled, OnExternalEvent]


@dataclass
class SyncState:
    last_fingerprint: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None


@dataclass
class ImportedPeriod:
    week_year: int
    week_number: int
    tasks_created: int


@dataclass
class SyncResult:
    status: SyncStatus
    success: bool
    tasks_created: int = 0
    errors: List[str] = field(default_factory=list)
    row_errors: List[RowError] = field(default_factory=list)
    imported_week_year: Optional[int] = None
    imported_week_number: Optional[int] = None
    imported_periods: List[ImportedPeriod] = field(default_factory=list)


class SyncStateStore(Protocol):
    async def get(self, key: str) -> Optional[SyncState]:
        ...

    async def set(self, key: str, state: SyncState) -> None:
        ...


class InMemorySyncStateStore:
    """Process-local sync state."""

    def __init__(self):
        self._states: Dict[str, SyncState] = {}

    async def get(self, key: str) -> Optional[SyncState]:
        state = self._states.get(key)
        return replace(state) if state else None

    async def set(self, key: str, state: SyncState) -> None:
        self._states[key] = replace(state)


class DatabaseSyncStateStore:
    """Sync state persisted in pam_sync_state, keyed by organization id."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, key: str) -> Optional[SyncState]:
        row = await self.db.get(PamSyncState, UUID(str(key)))
        if row is None:
            return None
        return SyncState(
            last_fingerprint=row.last_fingerprint,
            last_attempt_at=row.last_attempt_at,
            last_success_at=row.last_success_at,
        )

    async def set(self, key: str, state: SyncState) -> None:
        organization_id = UUID(str(key))
        row = await self.db.get(PamSyncState, organization_id)
        if row is None:
            row = PamSyncState(organization_id=organization_id)
            self.db.add(row)
        row.last_fingerprint = state.last_fingerprint
        row.last_attempt_at = state.last_attempt_at
        row.last_success_at = state.last_success_at
        await self.db.commit()


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return sign + "".join(reversed(digits))


def fingerprint(text: str) -> str:
    """31-multiplier rolling hash over UTF-16 code units, wrapped to signed 32 bits, in base 36.

    Not collision resistant; it only tells "same document as last time".
    """
    data = text.encode("utf-16-le")
    value = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return _to_base36(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PamSyncService:
    """Drives sheet syncs for organizations.

    The in-flight guard is a plain set: all runs of a service instance share a
    single event loop, so check-and-add cannot interleave.
    """

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        policy: Optional[str] = None,
        min_interval_seconds: Optional[int] = None,
    ):
        self.clock = clock or _utcnow
        self._policy = ImportPolicy(policy) if policy else None
        self._min_interval = min_interval_seconds
        self._in_flight: Set[str] = set()

    @property
    def policy(self) -> ImportPolicy:
        return self._policy or ImportPolicy(settings.PAM_IMPORT_POLICY.lower())

    @property
    def min_interval(self) -> timedelta:
        seconds = self._min_interval
        if seconds is None:
            seconds = settings.PAM_MIN_SYNC_INTERVAL_SECONDS
        return timedelta(seconds=seconds)

    def is_running(self, organization_id) -> bool:
        return str(organization_id) in self._in_flight

    @staticmethod
    def _finish(result: SyncResult) -> SyncResult:
        pam_sync_runs_total.labels(result.status.value).inc()
        if result.tasks_created:
            pam_tasks_imported_total.inc(result.tasks_created)
        return result

    def _default_source(self, organization) -> Optional[DocumentSource]:
        url = getattr(organization, "sheet_url", None) or settings.PAM_SHEET_CSV_URL
        return HttpSheetSource(url) if url else None

    async def sync_period(
        self,
        db: AsyncSession,
        organization,
        *,
        importer_id: Optional[UUID] = None,
        force: bool = False,
        trigger: Optional[SyncTrigger] = None,
        week: Optional[Tuple[int, int]] = None,
        state_store: Optional[SyncStateStore] = None,
        source: Optional[DocumentSource] = None,
    ) -> SyncResult:
        """Run one sync of the organization's task sheet."""
        if trigger is None:
            trigger = Manual(force=force)
        forced = isinstance(trigger, Manual) and (trigger.force or force)
        if force and not forced:
            logger.warning("Ignoring force for %s trigger", trigger.name)

        key = str(organization.id)
        if key in self._in_flight:
            logger.info("Sync already running for organization %s, ignoring %s trigger", key, trigger.name)
            return self._finish(SyncResult(status=SyncStatus.IN_PROGRESS, success=True))

        self._in_flight.add(key)
        try:
            store = state_store if state_store is not None else DatabaseSyncStateStore(db)
            state = await store.get(key) or SyncState()
            now = self.clock()

            if not forced and state.last_attempt_at is not None and now - state.last_attempt_at < self.min_interval:
                logger.debug("Sync throttled for organization %s", key)
                return self._finish(SyncResult(status=SyncStatus.THROTTLED, success=True))

            if source is None:
                source = self._default_source(organization)
            if source is None:
                return self._finish(
                    SyncResult(status=SyncStatus.FAILED, success=False, errors=["No task sheet configured"])
                )

            started = time.perf_counter()
            try:
                try:
                    document = await source.fetch()
                except PamImportError as exc:
                    return self._finish(SyncResult(status=SyncStatus.FAILED, success=False, errors=[str(exc)]))

                state.last_attempt_at = now
                await store.set(key, state)

                current = fingerprint(document)
                if not forced and state.last_fingerprint == current:
                    logger.info("Task sheet unchanged for organization %s", key)
                    return self._finish(SyncResult(status=SyncStatus.UNCHANGED, success=True))

                logger.info("Syncing task sheet for organization %s (%s, forced=%s)", key, trigger.name, forced)
                result = await self._import(
                    db,
                    organization_id=organization.id,
                    document=document,
                    importer_id=importer_id,
                    source_label=settings.PAM_SYNC_SOURCE_LABEL,
                    week=week,
                )
                if result.success:
                    state.last_fingerprint = current
                    state.last_success_at = self.clock()
                    await store.set(key, state)
                return self._finish(result)
            finally:
                pam_sync_duration_seconds.observe(time.perf_counter() - started)
        finally:
            self._in_flight.discard(key)

    async def import_document(
        self,
        db: AsyncSession,
        organization,
        content: str,
        *,
        importer_id: Optional[UUID] = None,
        source_label: Optional[str] = None,
        week: Optional[Tuple[int, int]] = None,
    ) -> SyncResult:
        """Import an uploaded document; always forced and never throttled."""
        key = str(organization.id)
        if key in self._in_flight:
            return self._finish(SyncResult(status=SyncStatus.IN_PROGRESS, success=True))

        self._in_flight.add(key)
        try:
            document = await StaticDocumentSource(content).fetch()
            result = await self._import(
                db,
                organization_id=organization.id,
                document=document,
                importer_id=importer_id,
                source_label=source_label or UPLOAD_SOURCE_LABEL,
                week=week,
            )
            return self._finish(result)
        finally:
            self._in_flight.discard(key)

    async def _import(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        document: str,
        importer_id: Optional[UUID],
        source_label: Optional[str],
        week: Optional[Tuple[int, int]],
    ) -> SyncResult:
        try:
            sheet = parse_sheet(document)
        except PamImportError as exc:
            return SyncResult(status=SyncStatus.FAILED, success=False, errors=[str(exc)])

        outcome = validate_sheet(sheet)
        if outcome.errors:
            logger.warning("%s invalid rows in task sheet for organization %s", len(outcome.errors), organization_id)

        if outcome.errors and self.policy == ImportPolicy.STRICT:
            return SyncResult(
                status=SyncStatus.FAILED,
                success=False,
                errors=outcome.messages,
                row_errors=list(outcome.errors),
            )
        if not outcome.rows:
            return SyncResult(
                status=SyncStatus.FAILED,
                success=False,
                errors=outcome.messages + ["No valid tasks to import"],
                row_errors=list(outcome.errors),
            )

        rows = outcome.rows
        if week is not None:
            rows = [row for row in rows if row.period == tuple(week)]
            if not rows:
                return SyncResult(
                    status=SyncStatus.NO_MATCHING_ROWS,
                    success=True,
                    errors=outcome.messages,
                    row_errors=list(outcome.errors),
                    imported_week_year=week[0],
                    imported_week_number=week[1],
                )

        try:
            reconciled = await period_reconciler.reconcile_batch(
                db,
                organization_id=organization_id,
                rows=rows,
                importer_id=importer_id,
                source_label=source_label,
            )
        except PamImportError as exc:
            return SyncResult(
                status=SyncStatus.FAILED,
                success=False,
                errors=[str(exc)],
                row_errors=list(outcome.errors),
            )

        first_year, first_week = week if week is not None else rows[0].period
        return SyncResult(
            status=SyncStatus.IMPORTED,
            success=True,
            tasks_created=sum(period.tasks_created for period in reconciled),
            errors=outcome.messages,
            row_errors=list(outcome.errors),
            imported_week_year=first_year,
            imported_week_number=first_week,
            imported_periods=[
                ImportedPeriod(period.week_year, period.week_number, period.tasks_created)
                for period in reconciled
            ],
        )


pam_sync_service = PamSyncService()
