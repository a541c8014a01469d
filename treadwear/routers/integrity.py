"""Store-wide integrity report."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from treadwear.dependencies import Tracking
from treadwear.models.tracking import IntegrityIssueRead, IntegrityReportRead

router = APIRouter(prefix="/integrity", tags=["integrity"])


@router.get("", response_model=IntegrityReportRead)
async def integrity_report(tracking: Tracking) -> Any:
    """Scan items, sessions and attributions for broken invariants.  Read-only."""
    report = await tracking.integrity.validate()
    return IntegrityReportRead(
        is_valid=report.is_valid,
        items_checked=report.items_checked,
        sessions_checked=report.sessions_checked,
        attributions_checked=report.attributions_checked,
        issues=[
            IntegrityIssueRead(
                kind=issue.kind.value,
                message=issue.message,
                severity=issue.severity.value,
                item_id=issue.item_id,
                record_ids=issue.record_ids,
            )
            for issue in report.issues
        ],
    )
