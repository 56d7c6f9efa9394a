#!/usr/bin/env python3
"""Main entry point for counting active contributors across SCM platforms."""

import argparse
import logging
import sys
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path

import requests
import yaml

from aggregator import evaluate_platform
from fetcher import fetch_all_commits, fetch_repos
from identity import Platform, parse_platform
from renderer import render_markdown
from report import OVERVIEW_FILE, SUMMARY_FILE, write_repository_overview, write_summary_workbook
from rules import ExclusionRules
from storage import clear_platform, has_commits, read_commits, read_repo_list, repo_list_path, store_commits, write_repo_list
from summary import Summary

# Resolve paths relative to repo root
REPO_ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG = REPO_ROOT / "config.yml"
DEFAULT_TEMPLATE = REPO_ROOT / "templates" / "summary.md.j2"
MARKDOWN_FILE = "scm_summary.md"

DEFAULT_WINDOW_DAYS = 90

log = logging.getLogger(__name__)

REQUIRED_CONFIG_KEYS = ["output_dir", "platforms"]


def setup_logging(verbose: bool = False):
    """Configure logging for all modules."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def load_config(config_path: Path) -> dict:
    """Load and validate config file."""
    with open(config_path) as f:
        config = yaml.safe_load(f) or {}

    # Validate required keys
    missing = [k for k in REQUIRED_CONFIG_KEYS if k not in config]
    if missing:
        raise ValueError(f"Missing required config keys: {', '.join(missing)}")

    platforms = config["platforms"] or {}
    unknown = [k for k in platforms if parse_platform(k) is None]
    if unknown:
        raise ValueError(f"Unknown platforms in config: {', '.join(map(str, unknown))}")
    # Normalize keys so "azure-devops" and "AzureDevOps" both work
    config["platforms"] = {parse_platform(k).value: v or {} for k, v in platforms.items()}

    # Set defaults for optional sections
    config.setdefault("api", {})
    config.setdefault("window_days", DEFAULT_WINDOW_DAYS)

    return config


def get_date_range(days: int, today: date = None):
    """Rolling window of `days` days ending today."""
    end = today or date.today()
    start = end - timedelta(days=days)
    return start, end


def window_start(start: date) -> datetime:
    return datetime.combine(start, time.min, tzinfo=timezone.utc)


def configure_rules(rules: ExclusionRules, platform: Platform, config: dict) -> int:
    platform_cfg = config["platforms"].get(platform.value, {})
    count = rules.configure(
        platform,
        pattern=platform_cfg.get("regex"),
        pattern_file=platform_cfg.get("regex_file"),
    )
    log.info(f"{platform.label}: {count} exclusion patterns")
    return count


def refresh_repo_list(
    platform: Platform, base_dir: Path, config: dict, force_reload: bool, refetch: bool = False
) -> list[dict]:
    """Fetch the repository list unless one already exists (kept for user edits)."""
    if force_reload or refetch or not repo_list_path(base_dir, platform).exists():
        log.info(f"Fetching repositories for {platform.label}...")
        repos = fetch_repos(platform, config)
        log.info(f"Found {len(repos)} repositories")
        if force_reload:
            clear_platform(base_dir, platform)
        write_repo_list(base_dir, platform, repos)
    return read_repo_list(base_dir, platform)


def fetch_missing_commits(
    platform: Platform, repos: list[dict], base_dir: Path, since: datetime, config: dict, force_reload: bool
) -> int:
    """Fetch and store commits for repos that have none stored yet."""
    pending = []
    for repo in repos:
        if not force_reload and has_commits(base_dir, platform, repo["path"]):
            log.info(f"Skipping {repo['path']} - commit file already exists")
            continue
        pending.append(repo)

    if not pending:
        return 0

    log.info(f"Fetching commits for {len(pending)} {platform.label} repos...")
    fetched = fetch_all_commits(platform, pending, since, config)
    stored = 0
    for repo_path, commits in fetched.items():
        try:
            store_commits(base_dir, platform, repo_path, commits)
        except (OSError, ValueError) as e:
            log.error(f"Error storing commits for {repo_path}: {e}")
            continue
        stored += 1
    return stored


def evaluate(platform: Platform, repos: list[dict], base_dir: Path, rules: ExclusionRules):
    repo_records = ((r["path"], read_commits(base_dir, platform, r["path"])) for r in repos)
    return evaluate_platform(platform, repo_records, rules)


def select_platforms(args, config: dict, base_dir: Path) -> list[Platform]:
    if args.platform:
        return [parse_platform(p) for p in args.platform]
    if args.mode == "evaluate":
        return [p for p in Platform if repo_list_path(base_dir, p).exists()]
    return [parse_platform(k) for k in config["platforms"]]


def run(args, config: dict) -> Summary:
    base_dir = Path(args.output_dir or config["output_dir"])
    days = args.days or config["window_days"]
    start, end = get_date_range(days)
    since = window_start(start)
    log.info(f"Date range: {start} to {end}")

    rules = ExclusionRules()
    summary = Summary()
    details = {}
    evaluated_repos = []

    platforms = select_platforms(args, config, base_dir)
    if not platforms:
        log.warning("No platforms to process")

    for platform in platforms:
        log.info(f"Processing {platform.label}")

        if args.mode == "evaluate":
            all_repos = read_repo_list(base_dir, platform)
        else:
            try:
                all_repos = refresh_repo_list(
                    platform, base_dir, config, args.force_reload, refetch=args.mode == "list"
                )
            except (ValueError, PermissionError, requests.exceptions.RequestException) as e:
                log.error(f"Error fetching {platform.label} repositories: {e}")
                continue

        if args.mode == "list":
            log.info(f"Review {repo_list_path(base_dir, platform)} and set Include to Y/N")
            continue

        included = [r for r in all_repos if r["include"]]
        log.info(f"Processing {len(included)} included repositories")

        if args.mode == "fetch":
            fetch_missing_commits(platform, included, base_dir, since, config, args.force_reload)

        configure_rules(rules, platform, config)
        repo_results, platform_contributors = evaluate(platform, included, base_dir, rules)
        details[platform] = repo_results
        evaluated_repos.extend(included)

        summary.fold_platform(platform, len(platform_contributors.included), len(included), len(all_repos))
        log.info(
            f"Found {len(platform_contributors.included)} unique {platform.label} contributors "
            f"({len(platform_contributors.excluded)} excluded)"
        )

        # The summary is current after every platform
        write_reports(args, summary, details, evaluated_repos, base_dir, start, end)

    return summary


def write_reports(args, summary: Summary, details: dict, repos: list[dict], base_dir: Path, start: date, end: date):
    markdown = render_markdown(
        summary,
        details,
        Path(args.template),
        start.isoformat(),
        end.isoformat(),
    )

    if args.dry_run:
        print("\n" + "=" * 60)
        print(markdown)
        return

    write_summary_workbook(summary, details, base_dir / SUMMARY_FILE)
    write_repository_overview(repos, base_dir / OVERVIEW_FILE)
    output_path = base_dir / MARKDOWN_FILE
    output_path.write_text(markdown)
    log.info(f"Output written to: {output_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Count active contributors across GitHub, GitLab and Azure DevOps")
    parser.add_argument(
        "--mode",
        choices=["list", "fetch", "evaluate"],
        default="fetch",
        help="list: write repository lists only; fetch: fetch and evaluate; evaluate: stored data only (default: fetch)",
    )
    parser.add_argument(
        "--platform",
        action="append",
        choices=[p.value for p in Platform],
        help="Platform to process (repeatable, default: all configured)",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG),
        help="Config file path",
    )
    parser.add_argument(
        "--template",
        default=str(DEFAULT_TEMPLATE),
        help="Template file path",
    )
    parser.add_argument("--output-dir", help="Override output_dir from config")
    parser.add_argument("--days", type=int, help="Rolling window length in days (default: from config, 90)")
    parser.add_argument(
        "--force-reload",
        action="store_true",
        help="Refetch repository lists and all commits",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the markdown report to stdout instead of writing reports",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)

    # Load config
    config_path = Path(args.config)
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        log.error(f"Config error: {e}")
        sys.exit(1)

    summary = run(args, config)

    log.info(
        f"Summary: {summary.github_count} GitHub, "
        f"{summary.gitlab_count} GitLab, "
        f"{summary.azure_devops_count} Azure DevOps, "
        f"{summary.total_unique_contributors} total"
    )


if __name__ == "__main__":
    main()
