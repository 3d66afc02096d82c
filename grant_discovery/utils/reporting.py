"""
Reporting utility functions for the Grant Discovery engine.

This module writes run summaries (HTML + JSON), exports candidates to CSV
and builds the rich tables the CLI prints for source health and feed stats.
"""

import html
import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from rich.table import Table

from grant_discovery.config import OUTPUT_DIR, REGION_NAMES
from grant_discovery.models import Candidate, DiscoveryResult, RunReport, Source, SourceHealth

# Configure logger
logger = logging.getLogger("reporting")

CSV_COLUMNS = [
    "id", "title", "url", "source_name", "region", "score", "deadline",
    "amount", "eligibility", "matched_terms", "status", "discovered_at",
]


def generate_summary_report(result: DiscoveryResult, output_dir: Path = OUTPUT_DIR) -> Path:
    """
    Generate a summary report of a discovery run.

    Args:
        result: Candidates and run report from run_discovery
        output_dir: Directory to save the report

    Returns:
        Path: Path to the generated HTML file (a JSON twin is written beside it)
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    report_path = output_dir / f"discovery_report_{timestamp}.html"
    json_path = output_dir / f"discovery_report_{timestamp}.json"

    report_path.parent.mkdir(parents=True, exist_ok=True)

    with open(report_path, 'w', encoding='utf-8') as f:
        f.write(_generate_html_report(result))

    with open(json_path, 'w', encoding='utf-8') as f:
        json.dump(_generate_json_data(result), f, indent=2, ensure_ascii=False)

    logger.info(f"Summary report generated: {report_path}")
    logger.info(f"Report data saved to: {json_path}")
    return report_path


def _generate_html_report(result: DiscoveryResult) -> str:
    """Generate the HTML report content."""
    report = result.report
    region_counts = Counter(c.region for c in result.candidates).most_common()
    max_region_count = region_counts[0][1] if region_counts else 0

    page = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
        <title>Grant Discovery Report</title>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; margin: 20px; }}
            h1, h2 {{ color: #333; }}
            .summary {{ display: flex; justify-content: space-between; margin-bottom: 30px; }}
            .summary-box {{ background: #f5f5f5; padding: 20px; border-radius: 8px; width: 22%; text-align: center; }}
            .summary-number {{ font-size: 36px; font-weight: bold; color: #2e7d32; }}
            .summary-label {{ font-size: 16px; color: #666; }}
            table {{ width: 100%; border-collapse: collapse; margin-bottom: 30px; }}
            th, td {{ border: 1px solid #ddd; padding: 10px; text-align: left; }}
            th {{ background-color: #f2f2f2; }}
            tr:nth-child(even) {{ background-color: #f9f9f9; }}
            .bar {{ height: 24px; background-color: #2e7d32; display: inline-block; }}
            .bar-label {{ display: inline-block; width: 160px; }}
        </style>
    </head>
    <body>
        <h1>Grant Discovery Report</h1>
        <p>Run {html.escape(report.run_id)}: {report.status}, started {report.started_at:%Y-%m-%d %H:%M:%S}</p>

        <div class="summary">
            <div class="summary-box">
                <div class="summary-number">{report.sources_succeeded}/{report.sources_attempted}</div>
                <div class="summary-label">Sources Succeeded</div>
            </div>
            <div class="summary-box">
                <div class="summary-number">{report.candidates_found}</div>
                <div class="summary-label">Items Found</div>
            </div>
            <div class="summary-box">
                <div class="summary-number">{report.new_candidates}</div>
                <div class="summary-label">New Candidates</div>
            </div>
            <div class="summary-box">
                <div class="summary-number">{len(report.errors)}</div>
                <div class="summary-label">Errors</div>
            </div>
        </div>

        <h2>Candidates by Region</h2>
        <div>
    """

    for region, count in region_counts:
        percentage = (count / max_region_count) * 100 if max_region_count else 0
        page += f"""
            <div>
                <span class="bar-label">{html.escape(REGION_NAMES.get(region, region))}</span>
                <div class="bar" style="width: {percentage * 0.6:.0f}%;"></div>
                <span>{count}</span>
            </div>
        """

    page += """
        </div>

        <h2>New Candidates</h2>
        <table>
            <tr><th>Title</th><th>Source</th><th>Deadline</th><th>Amount</th><th>Score</th></tr>
    """

    for candidate in result.candidates:
        page += f"""
            <tr>
                <td><a href="{html.escape(candidate.url)}">{html.escape(candidate.title)}</a></td>
                <td>{html.escape(candidate.source_name)}</td>
                <td>{html.escape(candidate.deadline or "Not specified")}</td>
                <td>{html.escape(candidate.amount or "Not specified")}</td>
                <td>{candidate.score:.1f}</td>
            </tr>
        """

    page += """
        </table>
    """

    if report.errors:
        page += "<h2>Errors</h2><table><tr><th>Source</th><th>URL</th><th>Error</th></tr>"
        for error in report.errors:
            page += (
                f"<tr><td>{html.escape(error.source_id)}</td>"
                f"<td>{html.escape(error.url or '')}</td>"
                f"<td>{html.escape(error.error)}</td></tr>"
            )
        page += "</table>"

    page += """
    </body>
    </html>
    """
    return page


def _generate_json_data(result: DiscoveryResult) -> Dict:
    """Generate JSON data for the run."""
    return {
        "report": result.report.model_dump(mode="json"),
        "regions": dict(Counter(c.region for c in result.candidates)),
        "candidates": [c.to_dict() for c in result.candidates],
    }


def _prepare_csv_data(candidate: Candidate) -> Dict:
    """Flatten a candidate for CSV output."""
    data = candidate.to_dict()
    data["matched_terms"] = "; ".join(
        f"{category}: {', '.join(terms)}" for category, terms in candidate.matched_terms.items()
    )
    return {column: data.get(column) for column in CSV_COLUMNS}


def export_candidates_csv(candidates: List[Candidate], path: Path) -> Path:
    """Write candidates to CSV, highest score first."""
    rows = [_prepare_csv_data(c) for c in sorted(candidates, key=lambda c: c.score, reverse=True)]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info(f"Exported {len(rows)} candidates to {path}")
    return path


def run_summary_table(report: RunReport) -> Table:
    table = Table(title=f"Discovery run {report.run_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    duration = report.duration_seconds
    table.add_row("Status", report.status)
    table.add_row("Sources attempted", str(report.sources_attempted))
    table.add_row("Sources succeeded", str(report.sources_succeeded))
    table.add_row("Items found", str(report.candidates_found))
    table.add_row("Above threshold", str(report.candidates_above_threshold))
    table.add_row("New candidates", str(report.new_candidates))
    table.add_row("Errors", str(len(report.errors)))
    table.add_row("Stopped early", "yes" if report.stopped_early else "no")
    table.add_row("Duration", f"{duration:.1f}s" if duration is not None else "-")
    return table


def source_health_table(health: Dict[str, SourceHealth], sources: Optional[List[Source]] = None) -> Table:
    """Per-source success/failure counts, worst first."""
    names = {s.id: s.name for s in sources or []}
    table = Table(title="Source health")
    table.add_column("Source", style="cyan")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Rate", justify="right")
    table.add_column("Last candidates", justify="right")
    table.add_column("Last error")

    for source_id, entry in sorted(health.items(), key=lambda kv: kv[1].success_rate):
        table.add_row(
            names.get(source_id, source_id),
            str(entry.successes),
            str(entry.failures),
            f"{entry.success_rate:.0%}",
            str(entry.last_candidates),
            (entry.last_error or "")[:60],
        )
    return table


def candidate_stats_table(candidates: List[Candidate]) -> Table:
    """Candidate counts by status and region."""
    table = Table(title=f"Candidate feed ({len(candidates)} total)")
    table.add_column("Group", style="cyan")
    table.add_column("Value")
    table.add_column("Count", justify="right")

    for status, count in Counter(c.status for c in candidates).most_common():
        table.add_row("status", status, str(count))
    for region, count in Counter(c.region for c in candidates).most_common():
        table.add_row("region", REGION_NAMES.get(region, region), str(count))

    with_deadline = sum(1 for c in candidates if c.deadline)
    table.add_row("fields", "with deadline", str(with_deadline))
    table.add_row("fields", "with amount", str(sum(1 for c in candidates if c.amount)))
    return table
