"""Contributor aggregation per repository and per platform."""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from identity import Identity, Platform, identify, parse_platform
from rules import Classification, ExclusionRules

log = logging.getLogger(__name__)


@dataclass
class Contributor:
    name: str
    email: str = ""
    commits: int = 0

    @property
    def key(self) -> str:
        return f"{self.name}:{self.email}"


@dataclass
class Contributors:
    """Included and excluded contributors keyed by identity."""

    included: dict[str, Contributor] = field(default_factory=dict)
    excluded: dict[str, Contributor] = field(default_factory=dict)


@dataclass
class RepositoryContributors(Contributors):
    repo_path: str = ""


@dataclass
class PlatformContributors(Contributors):
    platform: Platform | None = None


def _tally(bucket: dict[str, Contributor], identity: Identity) -> None:
    contributor = bucket.get(identity.key)
    if contributor is None:
        contributor = bucket[identity.key] = Contributor(identity.name, identity.email)
    contributor.commits += 1


def aggregate_contributors(records: Iterable, platform, rules: ExclusionRules = None) -> Contributors:
    """Fold raw commit records into deduplicated contributor tallies.

    Name-only identities always land in the excluded bucket since their
    email cannot be evaluated. Everything else is routed by the platform's
    exclusion rules.
    """
    result = Contributors()
    tag = parse_platform(platform)
    if tag is None:
        log.warning(f"Unknown platform {platform!r}, no contributors extracted")
        return result

    rules = rules or ExclusionRules()
    skipped = 0
    for raw in records or []:
        identity = identify(raw, tag)
        if identity is None:
            skipped += 1
            continue
        if identity.name_only:
            _tally(result.excluded, identity)
        elif rules.classify(identity.email, tag) is Classification.EXCLUDED:
            _tally(result.excluded, identity)
        else:
            _tally(result.included, identity)

    if skipped:
        log.debug(f"Skipped {skipped} {tag.label} commits without author identity")
    return result


def _union(dst: dict[str, Contributor], src: dict[str, Contributor]) -> None:
    for key, contributor in src.items():
        if key not in dst:
            dst[key] = Contributor(contributor.name, contributor.email, contributor.commits)


def merge_repository(platform_contributors: PlatformContributors, repo: Contributors) -> None:
    """Add a repository's contributors to the platform-wide union.

    Presence is what counts at platform level; commit counts are not
    summed across repositories.
    """
    _union(platform_contributors.included, repo.included)
    _union(platform_contributors.excluded, repo.excluded)


def evaluate_platform(
    platform, repo_records: Iterable[tuple[str, list]], rules: ExclusionRules = None
) -> tuple[list[RepositoryContributors], PlatformContributors]:
    """Aggregate each repository, then union them into a platform view."""
    tag = parse_platform(platform)
    platform_contributors = PlatformContributors(platform=tag)
    repo_results = []

    for repo_path, records in repo_records:
        contributors = aggregate_contributors(records, platform, rules)
        repo_result = RepositoryContributors(
            included=contributors.included,
            excluded=contributors.excluded,
            repo_path=repo_path,
        )
        repo_results.append(repo_result)
        merge_repository(platform_contributors, repo_result)
        log.debug(
            f"{repo_path}: {len(repo_result.included)} included, "
            f"{len(repo_result.excluded)} excluded"
        )

    return repo_results, platform_contributors
