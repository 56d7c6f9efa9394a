"""On-disk storage for fetched commits and repository selection lists."""

import json
import logging
import os
import shutil
from datetime import date
from pathlib import Path

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter

from identity import Platform

log = logging.getLogger(__name__)

REPO_SHEET = "Repositories"
REPO_COLUMNS = [
    ("Organization", 20),
    ("Repository", 30),
    ("Path", 40),
    ("Last Updated", 20),
    ("Include", 10),
]
COMMITS_FILE = "commits.json"


def repo_dir_name(repo_path: str) -> str:
    return repo_path.replace("/", "_")


def commits_path(base_dir: Path, platform: Platform, repo_path: str) -> Path:
    return Path(base_dir) / platform.value / repo_dir_name(repo_path) / COMMITS_FILE


def repo_list_path(base_dir: Path, platform: Platform) -> Path:
    return Path(base_dir) / f"repositories-{platform.value}.xlsx"


def has_commits(base_dir: Path, platform: Platform, repo_path: str) -> bool:
    return commits_path(base_dir, platform, repo_path).exists()


def store_commits(base_dir: Path, platform: Platform, repo_path: str, commits: list) -> Path | None:
    """Write commits atomically: temp file, verify, then rename."""
    if not isinstance(commits, list):
        log.error(f"Invalid commits data for {repo_path}: expected list but got {type(commits).__name__}")
        return None

    target = commits_path(base_dir, platform, repo_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(target.name + ".tmp")

    try:
        tmp.write_text(json.dumps(commits, indent=2), encoding="utf-8")
        if not isinstance(json.loads(tmp.read_text(encoding="utf-8")), list):
            raise ValueError("Verification of temporary file failed")
        os.replace(tmp, target)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise

    log.debug(f"Stored {len(commits)} commits for {repo_path} in {target}")
    return target


def read_commits(base_dir: Path, platform: Platform, repo_path: str) -> list:
    """Read stored commits. Missing or unreadable files give an empty list."""
    path = commits_path(base_dir, platform, repo_path)
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.error(f"Error reading commits for {repo_path}: {e}")
        return []
    if not isinstance(data, list):
        log.error(f"Commit file for {repo_path} does not hold a list")
        return []
    return data


def clear_platform(base_dir: Path, platform: Platform) -> None:
    """Remove all stored commits for a platform (used on force reload)."""
    platform_dir = Path(base_dir) / platform.value
    if platform_dir.exists():
        shutil.rmtree(platform_dir)
        log.info(f"Cleared existing data in {platform_dir}")


def write_repo_list(base_dir: Path, platform: Platform, repos: list[dict]) -> Path:
    """Write the repository selection workbook with every repo included."""
    wb = Workbook()
    ws = wb.active
    ws.title = REPO_SHEET
    ws.append([name for name, _ in REPO_COLUMNS])
    for idx, (_, width) in enumerate(REPO_COLUMNS):
        ws.column_dimensions[get_column_letter(idx + 1)].width = width

    today = date.today().isoformat()
    for repo in repos:
        ws.append([repo["org"], repo["name"], repo["path"], today, "Y"])

    path = repo_list_path(base_dir, platform)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    log.info(f"Repository list written to {path}")
    return path


def read_repo_list(base_dir: Path, platform: Platform) -> list[dict]:
    """Read every repository row, flagging the ones marked Include = Y."""
    path = repo_list_path(base_dir, platform)
    if not path.exists():
        log.debug(f"No repository list at {path}")
        return []

    wb = load_workbook(path, read_only=True)
    try:
        if REPO_SHEET not in wb.sheetnames:
            log.warning(f"{path} has no {REPO_SHEET} sheet")
            return []
        repos = []
        for row in wb[REPO_SHEET].iter_rows(min_row=2, values_only=True):
            if not row or len(row) < 5 or not row[2]:
                continue
            org, name, repo_path, _, include = row[:5]
            repos.append({
                "org": str(org or ""),
                "name": str(name or ""),
                "path": str(repo_path),
                "platform": platform.value,
                "include": str(include or "").strip().upper() == "Y",
            })
        return repos
    finally:
        wb.close()
