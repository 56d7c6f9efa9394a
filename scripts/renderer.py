"""Markdown rendering from Jinja2 templates."""

from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from identity import Platform
from summary import Summary


def build_platform_rows(summary: Summary, details: dict) -> list[dict]:
    """Per-platform context for the template, skipping platforms never evaluated."""
    rows = []
    for platform in Platform:
        repos = details.get(platform)
        if repos is None:
            continue
        totals = summary.platforms[platform]
        rows.append({
            "label": platform.label,
            "contributors": totals.contributors,
            "selected_repos": totals.selected_repos,
            "total_repos": totals.total_repos,
            "repos": sorted(
                (
                    {
                        "path": r.repo_path,
                        "included": sorted(r.included.values(), key=lambda c: (-c.commits, c.name)),
                        "excluded": len(r.excluded),
                    }
                    for r in repos
                ),
                key=lambda r: r["path"],
            ),
        })
    return rows


def render_markdown(
    summary: Summary,
    details: dict,
    template_path: Path,
    start_date: str,
    end_date: str,
) -> str:
    """Render the contributor summary to markdown using a Jinja2 template."""
    template_dir = template_path.parent
    template_name = template_path.name

    env = Environment(loader=FileSystemLoader(template_dir))
    template = env.get_template(template_name)

    context = {
        **summary.to_dict(),
        "platform_rows": build_platform_rows(summary, details),
        "start_date": start_date,
        "end_date": end_date,
        "generated_at": datetime.now().strftime("%Y-%m-%d %H:%M"),
    }

    return template.render(**context)
