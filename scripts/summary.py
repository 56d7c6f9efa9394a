"""Running cross-platform contributor totals."""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from identity import Platform, parse_platform

log = logging.getLogger(__name__)


@dataclass
class PlatformTotals:
    contributors: int = 0
    selected_repos: int = 0
    total_repos: int = 0


@dataclass
class Summary:
    """Per-platform counters plus an overall total.

    The overall total is the sum of the platform counts, so someone
    committing on two platforms is counted twice.
    """

    generated_at: datetime = field(default_factory=datetime.now)
    platforms: dict[Platform, PlatformTotals] = field(
        default_factory=lambda: {p: PlatformTotals() for p in Platform}
    )
    total_unique_contributors: int = 0

    def fold_platform(self, platform, included_count: int, selected_repo_count: int, total_repo_count: int) -> "Summary":
        """Replace one platform's counters and recompute the total."""
        tag = parse_platform(platform)
        if tag is None:
            log.warning(f"Ignoring totals for unknown platform {platform!r}")
            return self
        self.platforms[tag] = PlatformTotals(
            contributors=max(0, int(included_count)),
            selected_repos=max(0, int(selected_repo_count)),
            total_repos=max(0, int(total_repo_count)),
        )
        self.total_unique_contributors = sum(t.contributors for t in self.platforms.values())
        return self

    @property
    def github_count(self) -> int:
        return self.platforms[Platform.GITHUB].contributors

    @property
    def gitlab_count(self) -> int:
        return self.platforms[Platform.GITLAB].contributors

    @property
    def azure_devops_count(self) -> int:
        return self.platforms[Platform.AZURE_DEVOPS].contributors

    @property
    def report_date(self) -> str:
        return self.generated_at.strftime("%Y-%m-%d")

    @property
    def report_time(self) -> str:
        return self.generated_at.strftime("%H:%M:%S")

    def to_dict(self) -> dict:
        return {
            "date_of_report": self.report_date,
            "time_of_report": self.report_time,
            "platforms": {
                tag.value: {
                    "label": tag.label,
                    "contributors": totals.contributors,
                    "selected_repos": totals.selected_repos,
                    "total_repos": totals.total_repos,
                }
                for tag, totals in self.platforms.items()
            },
            "total_unique_contributors": self.total_unique_contributors,
        }
