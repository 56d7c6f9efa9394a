"""Excel report output for contributor summaries."""

import logging
from datetime import datetime
from pathlib import Path

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from aggregator import RepositoryContributors
from identity import Platform
from summary import Summary

log = logging.getLogger(__name__)

SUMMARY_FILE = "scm_summary.xlsx"
OVERVIEW_FILE = "contributor_summary.xlsx"

DETAIL_COLUMNS = [("Repository", 50), ("Committer", 40), ("Email", 40), ("Commits", 12)]


def _set_widths(ws, widths: list[int]) -> None:
    for idx, width in enumerate(widths):
        ws.column_dimensions[get_column_letter(idx + 1)].width = width


def _add_detail_sheets(wb: Workbook, platform: Platform, repos: list[RepositoryContributors]) -> None:
    title = f"{platform.label} Details"
    included = wb.create_sheet(title)
    removed = wb.create_sheet(f"{title} - Removed")

    for ws in (included, removed):
        ws.append([name for name, _ in DETAIL_COLUMNS])
        _set_widths(ws, [w for _, w in DETAIL_COLUMNS])

    for repo in repos:
        for c in repo.included.values():
            included.append([repo.repo_path, c.name, c.email, c.commits])
        for c in repo.excluded.values():
            removed.append([repo.repo_path, c.name, c.email, c.commits])


def write_summary_workbook(summary: Summary, details: dict, path: Path) -> Path:
    """Write the summary sheet plus detail tabs for platforms with contributors."""
    wb = Workbook()
    ws = wb.active
    ws.title = "SCM Report Summary"
    ws.append(["SCM Report Summary", "", "Selected Repositories", "Total Repositories"])
    _set_widths(ws, [40, 20, 20, 20])

    ws.append(["Date of report", summary.report_date])
    ws.append(["Time of report", summary.report_time])
    for platform in Platform:
        totals = summary.platforms[platform]
        ws.append([
            f"Total unique contributors across {platform.label}",
            totals.contributors,
            totals.selected_repos,
            totals.total_repos,
        ])
    ws.append(["Total unique across All SCM Platforms", summary.total_unique_contributors])

    for platform in Platform:
        if summary.platforms[platform].contributors > 0:
            _add_detail_sheets(wb, platform, details.get(platform, []))

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    log.info(f"Summary written to {path}")
    return path


def write_repository_overview(repos: list[dict], path: Path) -> Path:
    """Write a workbook listing every evaluated repository."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws.append(["Metric", "Value"])
    _set_widths(ws, [20, 40])
    ws.append(["Report Generated At", datetime.now().isoformat(timespec="seconds")])
    ws.append(["Total Repositories", len(repos)])

    detail = wb.create_sheet("Details")
    detail.append(["Repository", "Platform", "Organization"])
    _set_widths(detail, [40, 15, 20])
    for repo in repos:
        detail.append([repo["path"], repo["platform"], repo["org"]])

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path
