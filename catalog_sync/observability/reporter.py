"""
Generate human-readable sync reports in Markdown format.

This module provides RunReporter, which transforms RunStatistics and
integrity check results into formatted Markdown reports.

Report sections:
- Header with run metadata (ID, timestamp, duration, status)
- Per-entity counter table
- Integrity check results
- Source health status
- Sample of recorded issues

Design decisions:
- Markdown output for readability and version control friendliness
- Uses tabulate library for clean table formatting (GitHub-flavored)
- Reports saved with timestamp for historical tracking
"""
from datetime import datetime
from pathlib import Path
from typing import List

from tabulate import tabulate

from .integrity_checks import IntegrityCheckResult
from .metrics import RunStatistics

ISSUE_SAMPLE_SIZE = 20


class RunReporter:
    """
    Generates Markdown reports from sync run statistics.
    """

    def generate_report(
        self,
        statistics: RunStatistics,
        integrity_results: List[IntegrityCheckResult]
    ) -> str:
        """
        Generate full run report in Markdown format.

        Args:
            statistics: RunStatistics from a completed or cancelled run
            integrity_results: List of integrity check results

        Returns:
            Markdown-formatted report as string
        """
        lines = []

        lines.append("# Catalog Sync Report")
        lines.append(f"**Run ID:** {statistics.run_id}")
        lines.append(f"**Started:** {statistics.started_at.isoformat()}")
        lines.append(f"**Status:** {statistics.status}")
        if statistics.duration_seconds is not None:
            lines.append(f"**Duration:** {statistics.duration_seconds:.1f} seconds")
        lines.append("")

        lines.append("## Entities")
        rows = []
        for entity, counters in statistics.counters.items():
            rows.append([entity, counters.processed, counters.skipped, counters.errors, counters.rejected])
        totals = statistics.totals()
        rows.append(["total", totals.processed, totals.skipped, totals.errors, totals.rejected])
        lines.append(tabulate(
            rows,
            headers=["Entity", "Processed", "Skipped", "Errors", "Rejected"],
            tablefmt="github",
        ))
        lines.append("")

        if integrity_results:
            lines.append("## Integrity Checks")
            check_rows = []
            for result in integrity_results:
                status = "✓" if result.passed else "✗"
                check_rows.append([status, result.check_name, result.message])
            lines.append(tabulate(check_rows, headers=["Status", "Check", "Details"], tablefmt="github"))
            lines.append("")

        if statistics.source_health:
            lines.append("## Source Health")
            health_rows = []
            for source, health in statistics.source_health.items():
                status = "✓" if health.get("healthy", False) else "✗"
                health_rows.append([status, source, health.get("records", 0), health.get("error") or ""])
            lines.append(tabulate(health_rows, headers=["Status", "Source", "Records", "Last Error"], tablefmt="github"))
            lines.append("")

        if statistics.issues:
            lines.append("## Issues")
            issue_rows = [
                [issue["type"], issue["entity"], issue["context"].get("id", ""), issue["message"]]
                for issue in statistics.issues[:ISSUE_SAMPLE_SIZE]
            ]
            lines.append(tabulate(issue_rows, headers=["Type", "Entity", "Id", "Message"], tablefmt="github"))
            if len(statistics.issues) > ISSUE_SAMPLE_SIZE:
                lines.append(f"\n_{len(statistics.issues) - ISSUE_SAMPLE_SIZE} more issues not shown._")
            lines.append("")

        return "\n".join(lines)

    def save_report(self, report: str, output_dir: Path) -> Path:
        """
        Save report to file with timestamp.

        Args:
            report: Markdown report content
            output_dir: Directory to save report in

        Returns:
            Path to saved report file
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%d-%H%M%S")
        filepath = output_dir / f"sync-report-{timestamp}.md"
        filepath.write_text(report)
        return filepath
