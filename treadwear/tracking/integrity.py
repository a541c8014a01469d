"""Consistency checks over the whole tracking store.

``IntegrityValidator.validate()`` scans items, sessions, attributions and
legacy entries and reports anything that breaks a core rule.  It never
repairs data.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from treadwear.tracking.base import Session
from treadwear.tracking.clock import Clock
from treadwear.tracking.errors import repository_errors
from treadwear.tracking.store.base import PersistentStore

logger = logging.getLogger("treadwear.tracking.integrity")


class IssueKind(str, Enum):
    MULTIPLE_ACTIVE_SESSIONS = "multiple_active_sessions"
    OVERLAPPING_SESSIONS = "overlapping_sessions"
    INVERTED_SESSION = "inverted_session"
    ORPHANED_SESSION = "orphaned_session"
    ORPHANED_ATTRIBUTION = "orphaned_attribution"
    NEGATIVE_METRICS = "negative_metrics"
    MIXED_SOURCES = "mixed_sources"


class Severity(str, Enum):
    ERROR = "error"
    INFO = "info"


@dataclass
class IntegrityIssue:
    kind: IssueKind
    message: str
    severity: Severity = Severity.ERROR
    item_id: UUID | None = None
    record_ids: list[str] = field(default_factory=list)


@dataclass
class IntegrityReport:
    """All issues found by one validation pass."""

    items_checked: int = 0
    sessions_checked: int = 0
    attributions_checked: int = 0
    issues: list[IntegrityIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(i.severity is Severity.ERROR for i in self.issues)

    def of_kind(self, kind: IssueKind) -> list[IntegrityIssue]:
        return [i for i in self.issues if i.kind is kind]


class IntegrityValidator:
    def __init__(self, store: PersistentStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    async def validate(self) -> IntegrityReport:
        with repository_errors("read store for validation"):
            items = await self._store.list_items()
            sessions = await self._store.list_sessions()
            attributions = await self._store.list_attributions()
            legacy = await self._store.list_legacy_entries()

        now = self._clock.now()
        known = {item.item_id for item in items}
        report = IntegrityReport(
            items_checked=len(items),
            sessions_checked=len(sessions),
            attributions_checked=len(attributions),
        )

        active = [s for s in sessions if s.is_active]
        if len(active) > 1:
            report.issues.append(
                IntegrityIssue(
                    kind=IssueKind.MULTIPLE_ACTIVE_SESSIONS,
                    message=f"{len(active)} sessions are active at once",
                    record_ids=[str(s.session_id) for s in active],
                )
            )

        for session in sessions:
            if session.item_id not in known:
                report.issues.append(
                    IntegrityIssue(
                        kind=IssueKind.ORPHANED_SESSION,
                        message=f"Session {session.session_id} references a missing item",
                        item_id=session.item_id,
                        record_ids=[str(session.session_id)],
                    )
                )
            if session.end_time is not None and session.end_time < session.start_time:
                report.issues.append(
                    IntegrityIssue(
                        kind=IssueKind.INVERTED_SESSION,
                        message=f"Session {session.session_id} ends before it starts",
                        item_id=session.item_id,
                        record_ids=[str(session.session_id)],
                    )
                )
            if session.steps < 0 or session.distance_km < 0:
                report.issues.append(
                    IntegrityIssue(
                        kind=IssueKind.NEGATIVE_METRICS,
                        message=f"Session {session.session_id} has negative metrics",
                        item_id=session.item_id,
                        record_ids=[str(session.session_id)],
                    )
                )

        for first, second in _overlapping_pairs(sessions, now):
            report.issues.append(
                IntegrityIssue(
                    kind=IssueKind.OVERLAPPING_SESSIONS,
                    message=f"Sessions {first.session_id} and {second.session_id} overlap",
                    record_ids=[str(first.session_id), str(second.session_id)],
                )
            )

        for attribution in attributions:
            if attribution.item_id not in known:
                report.issues.append(
                    IntegrityIssue(
                        kind=IssueKind.ORPHANED_ATTRIBUTION,
                        message=f"Attribution for {attribution.bucket} references a missing item",
                        item_id=attribution.item_id,
                        record_ids=[str(attribution.attribution_id)],
                    )
                )
            if attribution.steps < 0 or attribution.distance_km < 0:
                report.issues.append(
                    IntegrityIssue(
                        kind=IssueKind.NEGATIVE_METRICS,
                        message=f"Attribution for {attribution.bucket} has negative metrics",
                        item_id=attribution.item_id,
                        record_ids=[str(attribution.attribution_id)],
                    )
                )

        modern = {s.item_id for s in sessions} | {a.item_id for a in attributions}
        legacy_by_item: dict[UUID, int] = defaultdict(int)
        for entry in legacy:
            legacy_by_item[entry.item_id] += 1
        for item_id, count in legacy_by_item.items():
            if item_id in modern:
                report.issues.append(
                    IntegrityIssue(
                        kind=IssueKind.MIXED_SOURCES,
                        message=(
                            f"Item {item_id} has {count} legacy entries that are ignored "
                            "because it also has sessions or attributions"
                        ),
                        severity=Severity.INFO,
                        item_id=item_id,
                    )
                )

        if report.issues:
            logger.warning(
                "Integrity check found %d issue(s) across %d items",
                len(report.issues),
                len(items),
            )
        return report


def _overlapping_pairs(sessions: list[Session], now) -> list[tuple[Session, Session]]:
    ordered = sorted(sessions, key=lambda s: s.start_time)
    pairs = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1:]:
            if second.start_time >= first.effective_end(now):
                break
            pairs.append((first, second))
    return pairs
