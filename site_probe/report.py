"""Aggregation of check results into a run report, and its rendering."""

import asyncio
import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from html import escape
from pathlib import Path

from site_probe.errors import AggregationError
from site_probe.models.discovery import DiscoveredPage
from site_probe.models.report import (
    PageTestReport,
    Recommendation,
    ReportSummary,
    RunMetadata,
    TestReport,
)
from site_probe.models.result import TestResult, TestType

log = logging.getLogger(__name__)

PRIORITY_ORDER: Mapping[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}

STATUS_SYMBOLS: Mapping[str, str] = {
    "pass": "✅",
    "fail": "❌",
    "skip": "⏭️",
    "error": "💥",
}

MAX_TABLE_ROWS = 30

HTML_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: system-ui, sans-serif; color: #1f2937; margin: 2rem; }}
.header {{ background: #1f2937; color: #fff; padding: 1.5rem; border-radius: 8px; }}
.cards {{ display: flex; flex-wrap: wrap; gap: 1rem; margin: 1.5rem 0; }}
.card {{ border: 1px solid #e5e7eb; border-radius: 8px; padding: 1rem; }}
.card .value {{ font-size: 1.75rem; font-weight: bold; }}
.card.pass .value {{ color: #16a34a; }}
.card.fail .value {{ color: #dc2626; }}
.rec {{ border-left: 4px solid #0ea5e9; padding: 0.5rem 1rem; margin: 1rem 0; }}
.rec.critical, .rec.high {{ border-color: #ef4444; }}
.rec.medium {{ border-color: #f59e0b; }}
table {{ border-collapse: collapse; width: 100%; }}
th, td {{ border-bottom: 1px solid #e5e7eb; padding: 0.5rem; text-align: left; }}
</style>
</head>
<body>
{body}
</body>
</html>
"""


def is_failing(result: TestResult) -> bool:
    """Whether ``result`` failed or errored."""
    return result.status in ("fail", "error")


@dataclass(frozen=True, kw_only=True)
class ReportGenerator:
    """Builds the run report and renders it as JSON and Markdown.

    Attributes:
        slow_page_ms: Average load time above which slow pages are reported
        min_pass_rate: Pass rate, in percent, below which a run is flagged
        network_failure_limit: Failed requests tolerated before flagging

    """

    slow_page_ms: float = 3000.0
    min_pass_rate: float = 80.0
    network_failure_limit: int = 5

    def build(
        self,
        pages: Sequence[PageTestReport],
        run_results: Sequence[TestResult],
        metadata: RunMetadata,
        *,
        unreachable: Sequence[DiscoveredPage] = (),
    ) -> TestReport:
        """Assemble the report of a run.

        Args:
            pages: Reports of the tested pages, in any order
            run_results: Results of run-scoped checks, in any order
            metadata: Context of the run
            unreachable: Pages discovery could not load

        Returns:
            The report, pages sorted by canonical URL and run results by
            check identifier

        Raises:
            AggregationError: If two results share a check identifier

        """
        pages = sorted(pages, key=lambda page: page.url)
        run_results = sorted(run_results, key=lambda result: result.check_id)
        unreachable = sorted(unreachable, key=lambda page: page.url)

        results = [
            *(result for page in pages for result in page.results),
            *run_results,
        ]
        counts = Counter(result.check_id for result in results)
        duplicates = sorted(check_id for check_id, n in counts.items() if n > 1)
        if duplicates:
            raise AggregationError(f"Duplicate check identifiers: {duplicates}")

        summary = self.summarize(pages, results, unreachable)
        return TestReport(
            metadata=metadata,
            summary=summary,
            pages=pages,
            run_results=run_results,
            unreachable=unreachable,
            recommendations=self.recommend(pages, results, summary),
        )

    def summarize(
        self,
        pages: Sequence[PageTestReport],
        results: Sequence[TestResult],
        unreachable: Sequence[DiscoveredPage] = (),
    ) -> ReportSummary:
        """Count the results of a run."""
        statuses = Counter(result.status for result in results)
        executed = len(results) - statuses["skip"]
        load_times = [p.page.load_time_ms for p in pages if p.page.load_time_ms]
        return ReportSummary(
            total_pages=len(pages),
            unreachable_pages=len(unreachable),
            total_checks=len(results),
            passed=statuses["pass"],
            failed=statuses["fail"],
            skipped=statuses["skip"],
            errors=statuses["error"],
            pass_rate=round(statuses["pass"] / executed * 100, 2) if executed else 0.0,
            mean_duration_ms=_mean([result.duration_ms for result in results]),
            avg_page_load_ms=_mean(load_times),
            accessibility_violations=sum(
                len(page.accessibility.violations)
                for page in pages
                if page.accessibility is not None
            ),
            by_classification=dict(
                sorted(
                    Counter(
                        result.error.classification
                        for result in results
                        if is_failing(result) and result.error is not None
                    ).items()
                )
            ),
            by_type=dict(sorted(Counter(str(r.type) for r in results).items())),
        )

    def recommend(
        self,
        pages: Sequence[PageTestReport],
        results: Sequence[TestResult],
        summary: ReportSummary,
    ) -> Sequence[Recommendation]:
        """Derive follow-ups from the results, most urgent first."""
        failing = [result for result in results if is_failing(result)]

        def affected(*classifications: str) -> list[TestResult]:
            return [
                result
                for result in failing
                if result.error is not None
                and result.error.classification in classifications
            ]

        recommendations: list[Recommendation] = []

        critical = affected("critical", "server")
        if critical:
            recommendations.append(
                Recommendation(
                    priority="critical",
                    category="functionality",
                    title="Fix critical errors",
                    description=(
                        f"{len(critical)} check(s) hit a crash, a server error or "
                        "a blocked workflow."
                    ),
                    affected_pages=_pages_of(critical),
                )
            )

        slow = [p.url for p in pages if p.page.load_time_ms > self.slow_page_ms]
        if summary.avg_page_load_ms > self.slow_page_ms:
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="performance",
                    title="Improve page load times",
                    description=(
                        f"Average page load time is {summary.avg_page_load_ms:.0f}ms, "
                        f"above {self.slow_page_ms:.0f}ms."
                    ),
                    affected_pages=slow,
                )
            )

        forms = [
            result
            for result in failing
            if result.type == TestType.FORM and result.check_id.endswith(":submit")
        ]
        if forms:
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="functionality",
                    title="Fix failing forms",
                    description=f"{len(forms)} form(s) did not accept valid input.",
                    affected_pages=_pages_of(forms),
                )
            )

        endpoints = [
            result
            for result in failing
            if result.type in (TestType.EDGE_FUNCTION, TestType.API)
        ]
        if endpoints:
            names = sorted({result.name for result in endpoints})
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="reliability",
                    title="Fix failing endpoints",
                    description=(
                        f"{len(endpoints)} endpoint check(s) failed: {', '.join(names)}"
                    ),
                )
            )

        network = affected("network")
        if len(network) > self.network_failure_limit:
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="reliability",
                    title="Fix network request failures",
                    description=f"{len(network)} network check(s) failed.",
                    affected_pages=_pages_of(network),
                )
            )

        if summary.accessibility_violations:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="accessibility",
                    title="Address accessibility issues",
                    description=(
                        f"{summary.accessibility_violations} accessibility "
                        "violation(s) may block users of assistive technology."
                    ),
                    affected_pages=_pages_of(affected("accessibility")),
                )
            )

        console = affected("console")
        if console:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="functionality",
                    title="Resolve console errors",
                    description=f"{len(console)} page(s) logged JavaScript errors.",
                    affected_pages=_pages_of(console),
                )
            )

        executed = summary.total_checks - summary.skipped
        if executed and summary.pass_rate < self.min_pass_rate:
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="functionality",
                    title="Improve overall pass rate",
                    description=(
                        f"Pass rate is {summary.pass_rate:.1f}%, below "
                        f"{self.min_pass_rate:.0f}%."
                    ),
                    affected_pages=_pages_of(failing),
                )
            )

        return sorted(recommendations, key=lambda rec: PRIORITY_ORDER[rec.priority])

    def render_markdown(self, report: TestReport) -> str:
        """Render ``report`` as a Markdown document."""
        meta, summary = report.metadata, report.summary
        lines = [
            "# site-probe report",
            "",
            f"**Run:** {meta.run_id}  ",
            f"**Environment:** {meta.environment}  ",
            f"**Base URL:** {meta.config.get('base_url', '')}  ",
            f"**Started:** {meta.started_at.isoformat()}  ",
            f"**Duration:** {_duration(report)}  ",
            f"**State:** {meta.state}",
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "| --- | --- |",
            f"| Pages tested | {summary.total_pages} |",
            f"| Unreachable pages | {summary.unreachable_pages} |",
            f"| Checks | {summary.total_checks} |",
            f"| Passed | {summary.passed} |",
            f"| Failed | {summary.failed} |",
            f"| Errors | {summary.errors} |",
            f"| Skipped | {summary.skipped} |",
            f"| Pass rate | {summary.pass_rate:.1f}% |",
            f"| Avg load time | {summary.avg_page_load_ms:.0f}ms |",
            f"| Accessibility violations | {summary.accessibility_violations} |",
            "",
        ]

        if summary.by_classification:
            lines += ["## Failures by classification", ""]
            lines += [
                f"- **{name}**: {count}"
                for name, count in summary.by_classification.items()
            ]
            lines.append("")

        if report.recommendations:
            lines += ["## Recommendations", ""]
            for rec in report.recommendations:
                lines += [f"### {rec.priority.upper()}: {rec.title}", ""]
                lines.append(rec.description)
                if rec.affected_pages:
                    lines += ["", f"**Affected pages:** {len(rec.affected_pages)}"]
                lines.append("")

        failing = [result for result in report.iter_results() if is_failing(result)]
        if failing:
            lines += [
                f"## Failing checks ({len(failing)})",
                "",
                "| Status | Check | Classification | Message |",
                "| --- | --- | --- | --- |",
            ]
            for result in failing[:MAX_TABLE_ROWS]:
                classification = result.error.classification if result.error else ""
                message = result.error.message if result.error else ""
                lines.append(
                    f"| {STATUS_SYMBOLS[result.status]} | `{result.check_id}` "
                    f"| {classification} | {_cell(message)} |"
                )
            if len(failing) > MAX_TABLE_ROWS:
                lines.append(f"\n*... and {len(failing) - MAX_TABLE_ROWS} more*")
            lines.append("")

        lines += [
            f"## Pages ({len(report.pages)})",
            "",
            "| URL | Load time | Passed | Status |",
            "| --- | --- | --- | --- |",
        ]
        for page in report.pages[:MAX_TABLE_ROWS]:
            passed = sum(1 for result in page.results if result.status == "pass")
            failed = any(is_failing(result) for result in page.results)
            lines.append(
                f"| {page.url} | {page.page.load_time_ms:.0f}ms "
                f"| {passed}/{len(page.results)} "
                f"| {STATUS_SYMBOLS['fail' if failed else 'pass']} |"
            )
        if len(report.pages) > MAX_TABLE_ROWS:
            lines.append(f"\n*... and {len(report.pages) - MAX_TABLE_ROWS} more*")

        if report.unreachable:
            lines += ["", f"## Unreachable pages ({len(report.unreachable)})", ""]
            lines += [
                f"- {page.url}: {page.unreachable_reason or 'unknown'}"
                for page in report.unreachable
            ]

        if report.run_results:
            lines += [
                "",
                f"## Run checks ({len(report.run_results)})",
                "",
                "| Status | Check | Duration |",
                "| --- | --- | --- |",
            ]
            lines += [
                f"| {STATUS_SYMBOLS[result.status]} | `{result.check_id}` "
                f"| {result.duration_ms:.0f}ms |"
                for result in report.run_results
            ]

        return "\n".join(lines) + "\n"

    def render_html(self, report: TestReport) -> str:
        """Render ``report`` as a standalone HTML page."""
        meta, summary = report.metadata, report.summary
        cards = [
            ("Pass rate", f"{summary.pass_rate:.1f}%", "pass"),
            ("Checks", str(summary.total_checks), ""),
            ("Passed", str(summary.passed), "pass"),
            ("Failed", str(summary.failed), "fail"),
            ("Errors", str(summary.errors), "fail"),
            ("Skipped", str(summary.skipped), ""),
            ("Pages tested", str(summary.total_pages), ""),
            ("Avg load time", f"{summary.avg_page_load_ms:.0f}ms", ""),
        ]
        body = [
            '<div class="header">',
            "<h1>site-probe report</h1>",
            f"<p>Run {escape(meta.run_id)} on {escape(meta.environment)}, "
            f"{escape(str(meta.config.get('base_url', '')))}</p>",
            f"<p>Started {meta.started_at.isoformat()}, took {_duration(report)}, "
            f"state {escape(str(meta.state))}</p>",
            "</div>",
            '<div class="cards">',
        ]
        body += [
            f'<div class="card {style}"><div class="value">{value}</div>'
            f'<div class="label">{label}</div></div>'
            for label, value, style in cards
        ]
        body.append("</div>")

        if report.recommendations:
            body.append("<h2>Recommendations</h2>")
            for rec in report.recommendations:
                body.append(
                    f'<div class="rec {rec.priority}"><h3>'
                    f"{rec.priority.upper()}: {escape(rec.title)}</h3>"
                    f"<p>{escape(rec.description)}</p></div>"
                )

        failing = [result for result in report.iter_results() if is_failing(result)]
        if failing:
            body.append(f"<h2>Failing checks ({len(failing)})</h2>")
            body.append(
                _html_table(
                    ["Status", "Check", "Classification", "Message"],
                    [
                        [
                            f"{STATUS_SYMBOLS[result.status]} {result.status}",
                            f"<code>{escape(result.check_id)}</code>",
                            escape(result.error.classification if result.error else ""),
                            escape(result.error.message if result.error else ""),
                        ]
                        for result in failing
                    ],
                )
            )

        body.append(f"<h2>Pages ({len(report.pages)})</h2>")
        body.append(
            _html_table(
                ["URL", "Load time", "Passed", "Status"],
                [
                    [
                        escape(page.url),
                        f"{page.page.load_time_ms:.0f}ms",
                        f"{sum(1 for r in page.results if r.status == 'pass')}"
                        f"/{len(page.results)}",
                        STATUS_SYMBOLS[
                            "fail" if any(map(is_failing, page.results)) else "pass"
                        ],
                    ]
                    for page in report.pages
                ],
            )
        )

        if report.unreachable:
            body.append(f"<h2>Unreachable pages ({len(report.unreachable)})</h2><ul>")
            body += [
                f"<li>{escape(page.url)}: "
                f"{escape(page.unreachable_reason or 'unknown')}</li>"
                for page in report.unreachable
            ]
            body.append("</ul>")

        if report.run_results:
            body.append(f"<h2>Run checks ({len(report.run_results)})</h2>")
            body.append(
                _html_table(
                    ["Status", "Check", "Duration"],
                    [
                        [
                            f"{STATUS_SYMBOLS[result.status]} {result.status}",
                            f"<code>{escape(result.check_id)}</code>",
                            f"{result.duration_ms:.0f}ms",
                        ]
                        for result in report.run_results
                    ],
                )
            )

        return HTML_PAGE.format(
            title=escape(f"site-probe report {meta.run_id}"), body="\n".join(body)
        )

    async def write(self, report: TestReport, output_dir: Path) -> Sequence[Path]:
        """Write ``report.json``, ``report.md`` and ``report.html`` into ``output_dir``.

        Returns:
            Paths of the written files

        """
        contents = {
            output_dir / "report.json": report.model_dump_json(indent=2),
            output_dir / "report.md": self.render_markdown(report),
            output_dir / "report.html": self.render_html(report),
        }
        await asyncio.to_thread(_write_files, contents)
        log.info("Wrote report to %s", output_dir)
        return list(contents)


def _write_files(contents: Mapping[Path, str]) -> None:
    for path, text in contents.items():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


def _pages_of(results: Sequence[TestResult]) -> list[str]:
    return sorted({result.page_url for result in results if result.page_url})


def _mean(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def _duration(report: TestReport) -> str:
    seconds = (report.metadata.finished_at - report.metadata.started_at).total_seconds()
    return f"{seconds:.1f}s"


def _cell(text: str, limit: int = 80) -> str:
    text = text.replace("|", "\\|").replace("\n", " ")
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _html_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    head = "".join(f"<th>{header}</th>" for header in headers)
    body = "".join(
        "<tr>" + "".join(f"<td>{cell}</td>" for cell in row) + "</tr>" for row in rows
    )
    return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"
