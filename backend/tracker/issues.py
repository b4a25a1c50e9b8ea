"""
Data-quality issue tracking.

Issues are append-only. Each one is returned to the caller with the response,
written to the data_issues table under the day's run, emitted on the log at
the level matching its severity, and counted in metrics.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Union

from shared.models.domain import DataIssue
from shared.models.enums import IssueCode, Severity
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger, log_with_severity
from shared.utils.metrics import DATA_ISSUES

logger = get_logger(__name__)


class IssueStore(Protocol):
    async def add_issue(self, issue: DataIssue) -> None: ...

    async def list_issues(
        self, run_id: str, severity: Optional[str] = None, tour: Optional[str] = None, limit: int = 500
    ) -> list[DataIssue]: ...

    async def top_issues(self, run_id: str, limit: int = 10) -> list[tuple[str, int]]: ...


class IssueCollector:
    """Accumulates the issues raised while building one response."""

    def __init__(
        self,
        tracker: "IssueTracker",
        run_id: Optional[str],
        tour: Optional[str] = None,
    ) -> None:
        self._tracker = tracker
        self.run_id = run_id
        self.tour = tour
        self.issues: list[DataIssue] = []

    async def log(
        self,
        severity: Severity,
        step: Union[IssueCode, str],
        message: str,
        evidence: Optional[dict[str, Any]] = None,
        tour: Optional[str] = None,
    ) -> DataIssue:
        issue = DataIssue(
            run_id=self.run_id,
            tour=tour or self.tour,
            severity=severity,
            step=step,
            message=message,
            evidence=evidence or {},
            created_at=self._tracker.now(),
        )
        self.issues.append(issue)
        await self._tracker.record(issue)
        return issue

    async def error(
        self, step: Union[IssueCode, str], message: str, *, tour: Optional[str] = None, **evidence: Any
    ) -> DataIssue:
        return await self.log(Severity.ERROR, step, message, evidence, tour=tour)

    async def warning(
        self, step: Union[IssueCode, str], message: str, *, tour: Optional[str] = None, **evidence: Any
    ) -> DataIssue:
        return await self.log(Severity.WARNING, step, message, evidence, tour=tour)

    async def info(
        self, step: Union[IssueCode, str], message: str, *, tour: Optional[str] = None, **evidence: Any
    ) -> DataIssue:
        return await self.log(Severity.INFO, step, message, evidence, tour=tour)

    def codes(self) -> list[str]:
        return [str(getattr(i.step, "value", i.step)) for i in self.issues]


class IssueTracker:
    def __init__(self, store: Optional[IssueStore], clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def collector(self, run_id: Optional[str], tour: Optional[str] = None) -> IssueCollector:
        return IssueCollector(self, run_id=run_id, tour=tour)

    async def record(self, issue: DataIssue) -> None:
        step = str(getattr(issue.step, "value", issue.step))
        DATA_ISSUES.labels(severity=issue.severity.value, step=step).inc()
        log_with_severity(
            logger,
            issue.severity.value,
            "data_issue",
            step=step,
            tour=issue.tour,
            run_id=issue.run_id,
            detail=issue.message,
            evidence=issue.evidence,
        )
        if self._store is None:
            return
        try:
            await self._store.add_issue(issue)
        except Exception as exc:
            logger.error("data_issue_persist_failed", step=step, tour=issue.tour, error=str(exc))

    async def get_issues(
        self, run_id: str, severity: Optional[str] = None, tour: Optional[str] = None
    ) -> list[DataIssue]:
        if self._store is None:
            return []
        return await self._store.list_issues(run_id, severity=severity, tour=tour)

    async def get_top_issues(self, run_id: str, limit: int = 10) -> list[tuple[str, int]]:
        if self._store is None:
            return []
        return await self._store.top_issues(run_id, limit=limit)
