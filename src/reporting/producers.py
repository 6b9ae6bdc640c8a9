"""
Dashboard Producers

Computes the payload of every dashboard view from Jira.

Each producer is a zero-argument coroutine (bug_stats takes an optional
month) returning a JSON-serializable payload. Producers raise on upstream
failure; callers (routes, the warming scheduler) decide what to do with it.
"""

import asyncio
import calendar
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from src.cache.registry import ProducerError

logger = logging.getLogger(__name__)


# Labels counted by the bug-areas view
BUG_AREA_LABELS: Sequence[str] = (
    "SFA:TAG:AWL",
    "SFA:TAG:BadBlocks",
    "SFA:TAG:EBOF:Fabrio:Reset",
    "SFA:TAG:DriveMissing",
    "SFA:TAG:Downgrade",
    "SFA:TAG:DI",
    "SFA:TAG:ControllerBootStuck",
    "SFA:TAG:DualControllerCrash",
    "SFA:TAG:SingleControllerCrash",
    "SFA:TAG:Upgrade",
    "SFA:TAG:DrivePartiaReady",
)

BUG_AREA_LABEL_PREFIX = "SFA:TAG:"

CI_COMPONENT = "Continuous Integration"
SCRIPT_COMPONENT = "Automated Test"


class IssueSource(Protocol):
    """What the producers need from Jira (JiraClient satisfies it)."""

    async def search(
        self,
        jql: str,
        fields: List[str] = None,
        max_results: int = 50,
        start_at: int = 0,
    ) -> Dict[str, Any]:
        ...

    async def count(self, jql: str) -> int:
        ...

    async def search_all(
        self,
        jql: str,
        fields: List[str] = None,
        page_size: int = 1000,
    ) -> Dict[str, Any]:
        ...


def month_bounds(year: int, month: int) -> tuple:
    """First and last day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def issue_created(issue: Dict[str, Any]) -> Optional[date]:
    """Creation date of an issue (``fields.created`` is ISO-8601)."""
    created = (issue.get("fields") or {}).get("created")
    if not created:
        return None
    try:
        return date.fromisoformat(created[:10])
    except ValueError:
        logger.warning(f"Unparseable created date on {issue.get('key')}: {created}")
        return None


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DashboardProducers:
    """
    Producers for the dashboard views.

    Args:
        source: Jira search client
        project: Jira project holding test cases and triaged bugs
        triagers: Users whose "Triaged by" marker counts a bug as triaged
        reporter: Automation account that files CI bugs
        bug_areas_project: Project searched by the bug-areas view
        bug_area_labels: Labels counted by the bug-areas view
        bug_area_version: Release the bug-areas view is scoped to
        today: Clock returning the current date (tests pin it)
    """

    def __init__(
        self,
        source: IssueSource,
        project: str = "SFAP",
        triagers: Iterable[str] = (),
        reporter: str = "bugs-bunny",
        bug_areas_project: str = "SFA Platform",
        bug_area_labels: Sequence[str] = BUG_AREA_LABELS,
        bug_area_version: str = "12.8",
        today: Optional[Callable[[], date]] = None,
    ):
        self.source = source
        self.project = project
        self.triagers = list(triagers)
        self.reporter = reporter
        self.bug_areas_project = bug_areas_project
        self.bug_area_labels = list(bug_area_labels)
        self.bug_area_version = bug_area_version
        self._today = today or date.today

    @property
    def today(self) -> date:
        return self._today()

    # =========================================================================
    # JQL
    # =========================================================================

    @property
    def manual_jql(self) -> str:
        return f"project = {self.project} AND issuetype = Test AND Method IN (Manual,EMPTY)"

    @property
    def automated_jql(self) -> str:
        return f"project = {self.project} AND issuetype IS NOT EMPTY AND Method = Automated"

    @property
    def all_jql(self) -> str:
        return f"project = {self.project} AND issuetype = Test"

    def bug_stats_jql(self, kind: str, start: date, end: date) -> str:
        """SAT triaging query for firmware/script/CI bugs created in [start, end]."""
        return (
            f"project = {self.project} AND issuetype = Bug AND status is not EMPTY "
            f'AND created >= "{start.isoformat()}" AND created <= "{end.isoformat()}" '
            f'AND reporter = {self.reporter} AND component = "{SCRIPT_COMPONENT}" '
            f"AND labels = CI:Stage4 AND text ~ {kind} order by status ASC"
        )

    def triaging_jql(self, start: date, end: date) -> str:
        triaged = " OR ".join(f'description ~ "Triaged by: {user}"' for user in self.triagers)
        jql = (
            f"project={self.project} AND issuetype=Bug AND reporter={self.reporter} "
            f'AND createdDate >= "{start.isoformat()}" AND createdDate <= "{end.isoformat()}"'
        )
        return f"{jql} AND ({triaged})" if triaged else jql

    def bug_areas_jql_variations(self) -> List[str]:
        """Queries tried in order until one is accepted by the server."""
        labels = ", ".join(self.bug_area_labels)
        base = f'project = "{self.bug_areas_project}" AND issuetype = Bug AND labels in ({labels})'
        return [
            f"{base} AND cf[10502] = {self.bug_area_version}",
            f'{base} AND cf[10502] = "{self.bug_area_version}"',
            f'{base} AND fixVersion = "{self.bug_area_version}"',
            base,
        ]

    # =========================================================================
    # Test cases
    # =========================================================================

    async def _manual_automated(self) -> tuple:
        return await asyncio.gather(
            self.source.count(self.manual_jql),
            self.source.count(self.automated_jql),
        )

    async def test_cases(self) -> Dict[str, int]:
        """Current manual vs automated test case counts."""
        manual, automated = await self._manual_automated()
        return {"manual": manual, "automated": automated}

    async def monthly_test_cases(self) -> Dict[str, Any]:
        manual, automated = await self._manual_automated()
        return {
            "manual": manual,
            "automated": automated,
            "total": manual + automated,
            "manualLabel": f"Manual({manual})",
            "automatedLabel": f"Automated({automated})",
        }

    async def all_test_cases(self) -> Dict[str, int]:
        total, manual, automated = await asyncio.gather(
            self.source.count(self.all_jql),
            self.source.count(self.manual_jql),
            self.source.count(self.automated_jql),
        )
        return {"all": total, "manual": manual, "automated": automated}

    async def cumulative_test_cases(self) -> Dict[str, int]:
        # Same payload as all_test_cases; kept as its own view for the frontend
        return await self.all_test_cases()

    async def cumulative_monthly(self) -> List[Dict[str, Any]]:
        """
        Cumulative manual/automated totals at the end of each month of the
        current year, up to the current month.

        Fetches each population once and buckets locally.
        """
        today = self.today
        _, current_end = month_bounds(today.year, today.month)
        created_filter = f'AND created <= "{current_end.isoformat()}" ORDER BY created ASC'

        manual, automated = await asyncio.gather(
            self.source.search_all(f"{self.manual_jql} {created_filter}", fields=["created"]),
            self.source.search_all(f"{self.automated_jql} {created_filter}", fields=["created"]),
        )
        manual_dates = [d for d in map(issue_created, manual["issues"]) if d]
        automated_dates = [d for d in map(issue_created, automated["issues"]) if d]

        logger.info(
            f"Retrieved {manual['total']} manual and {automated['total']} automated test cases"
        )

        months = []
        for month in range(1, today.month + 1):
            _, month_end = month_bounds(today.year, month)
            manual_count = sum(1 for d in manual_dates if d <= month_end)
            automated_count = sum(1 for d in automated_dates if d <= month_end)
            months.append({
                "month": f"{calendar.month_abbr[month]} {today.year}",
                "manual": manual_count,
                "automated": automated_count,
                "total": manual_count + automated_count,
                "manualLabel": f"Manual({manual_count})",
                "automatedLabel": f"Automated({automated_count})",
            })
        return months

    async def _monthly_counts(self) -> List[Dict[str, Any]]:
        """Cumulative counts per month via count queries; failed months are dropped."""
        today = self.today

        async def month_counts(month: int) -> Optional[Dict[str, Any]]:
            _, month_end = month_bounds(today.year, month)
            created_filter = f'AND createdDate <= "{month_end.isoformat()}"'
            try:
                manual, automated = await asyncio.gather(
                    self.source.count(f"{self.manual_jql} {created_filter}"),
                    self.source.count(f"{self.automated_jql} {created_filter}"),
                )
            except Exception as e:
                logger.error(f"Error fetching data for month {month}: {e}")
                return None
            return {
                "month": f"{calendar.month_abbr[month]} {today.year}",
                "manual": manual,
                "automated": automated,
                "total": manual + automated,
            }

        results = await asyncio.gather(*(month_counts(m) for m in range(1, today.month + 1)))
        return [r for r in results if r is not None]

    # =========================================================================
    # Bugs
    # =========================================================================

    async def bug_stats(self, month: Optional[int] = None) -> Dict[str, Any]:
        """
        SAT triaging statistics for one month of the current year.

        Raises:
            ValueError: month outside 1-12
        """
        today = self.today
        month = today.month if month is None else int(month)
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")

        start, end = month_bounds(today.year, month)
        firmware, script, ci = await asyncio.gather(
            self.source.count(self.bug_stats_jql("Firmware", start, end)),
            self.source.count(self.bug_stats_jql("Script", start, end)),
            self.source.count(self.bug_stats_jql("CI", start, end)),
        )

        logger.info(f"Bug stats for {today.year}-{month}: firmware={firmware}, script={script}, ci={ci}")

        return {
            "totalBugs": firmware + script + ci,
            "firmwareBugs": firmware,
            "ciBugs": ci,
            "scriptBugs": script,
            "month": month,
            "year": today.year,
            "monthName": calendar.month_name[month],
            "dateRange": {"start": start.isoformat(), "end": end.isoformat()},
        }

    async def monthly_triaging(self) -> List[Dict[str, Any]]:
        """
        Triaged bugs per month of the current year, split into CI, script and
        firmware (everything that is neither CI nor script).
        """
        today = self.today
        year_start = date(today.year, 1, 1)
        _, year_end = month_bounds(today.year, today.month)
        base = self.triaging_jql(year_start, year_end)

        all_bugs, ci_bugs, script_bugs = await asyncio.gather(
            self.source.search_all(base, fields=["created", "components"]),
            self.source.search_all(f'{base} AND component = "{CI_COMPONENT}"', fields=["created"]),
            self.source.search_all(f'{base} AND component = "{SCRIPT_COMPONENT}"', fields=["created"]),
        )

        logger.info(
            f"Retrieved {all_bugs['total']} total bugs, {ci_bugs['total']} CI bugs, "
            f"{script_bugs['total']} script bugs"
        )

        def per_month(issues: List[Dict[str, Any]]) -> Dict[int, int]:
            counts: Dict[int, int] = {}
            for created in map(issue_created, issues):
                if created and created.year == today.year:
                    counts[created.month] = counts.get(created.month, 0) + 1
            return counts

        totals = per_month(all_bugs["issues"])
        ci = per_month(ci_bugs["issues"])
        script = per_month(script_bugs["issues"])

        months = []
        for month in range(1, today.month + 1):
            total = totals.get(month, 0)
            ci_count = ci.get(month, 0)
            script_count = script.get(month, 0)
            months.append({
                "month": month,
                "monthName": calendar.month_name[month],
                "monthShort": calendar.month_abbr[month],
                "year": today.year,
                "totalBugs": total,
                "firmwareBugs": total - ci_count - script_count,
                "ciBugs": ci_count,
                "scriptBugs": script_count,
            })
        return months

    async def bug_areas(self) -> Dict[str, Any]:
        """
        Bug counts per area label for the configured release.

        Raises:
            ProducerError: no query variation was accepted
        """
        result = None
        for jql in self.bug_areas_jql_variations():
            try:
                result = await self.source.search_all(jql, fields=["labels"], page_size=100)
                logger.info(f"Found {result['total']} bugs with JQL: {jql}")
                break
            except Exception as e:
                logger.warning(f"JQL failed: {jql}, Error: {e}")

        if result is None:
            raise ProducerError("All JQL variations failed. Unable to fetch bug areas data.")

        counts = {label: 0 for label in self.bug_area_labels}
        for issue in result["issues"]:
            for label in (issue.get("fields") or {}).get("labels") or []:
                if label in counts:
                    counts[label] += 1

        label_counts = [
            {
                "label": label.replace(BUG_AREA_LABEL_PREFIX, "", 1),
                "fullLabel": label,
                "count": count,
            }
            for label, count in counts.items()
        ]
        label_counts.sort(key=lambda item: item["count"], reverse=True)

        return {
            "totalBugs": result["total"],
            "labelCounts": label_counts,
            "version": self.bug_area_version,
            "lastUpdated": _utcnow_iso(),
        }

    def _empty_bug_areas(self) -> Dict[str, Any]:
        return {
            "totalBugs": 0,
            "labelCounts": [],
            "version": self.bug_area_version,
            "lastUpdated": _utcnow_iso(),
        }

    # =========================================================================
    # Batch
    # =========================================================================

    async def _bug_areas_or_empty(self) -> Dict[str, Any]:
        try:
            return await self.bug_areas()
        except Exception as e:
            logger.error(f"Bug areas data failed in batch: {e}")
            return self._empty_bug_areas()

    async def dashboard_batch(self) -> Dict[str, Any]:
        """All home-page data in one payload. Bug-area failures are tolerated."""
        (manual, automated), total, monthly, bug_stats, bug_areas = await asyncio.gather(
            self._manual_automated(),
            self.source.count(self.all_jql),
            self._monthly_counts(),
            self.bug_stats(),
            self._bug_areas_or_empty(),
        )

        return {
            "testCaseData": {"manual": manual, "automated": automated},
            "allTestCaseData": {"all": total, "manual": manual, "automated": automated},
            "monthlyData": monthly,
            "bugStats": bug_stats,
            "bugAreas": bug_areas,
            "timestamp": _utcnow_iso(),
        }
