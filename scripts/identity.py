"""Platform tags and commit author identity extraction."""

from dataclasses import dataclass
from enum import Enum


class Platform(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    AZURE_DEVOPS = "azuredevops"

    @property
    def label(self) -> str:
        return PLATFORM_LABELS[self]


PLATFORM_LABELS = {
    Platform.GITHUB: "GitHub",
    Platform.GITLAB: "GitLab",
    Platform.AZURE_DEVOPS: "Azure DevOps",
}


def parse_platform(tag) -> Platform | None:
    """Resolve a platform tag, case-insensitively. Unknown tags give None."""
    if isinstance(tag, Platform):
        return tag
    if not isinstance(tag, str):
        return None
    cleaned = tag.strip().lower().replace("-", "").replace(" ", "")
    try:
        return Platform(cleaned)
    except ValueError:
        return None


@dataclass(frozen=True)
class CommitAuthor:
    """Author fields as found on one platform's commit record."""

    platform: Platform
    name: str | None
    email: str | None


@dataclass(frozen=True)
class Identity:
    name: str
    email: str = ""

    @property
    def key(self) -> str:
        return f"{self.name}:{self.email}"

    @property
    def name_only(self) -> bool:
        return not self.email


def _text(value) -> str | None:
    return value if isinstance(value, str) and value else None


def _author_block(block) -> tuple[str | None, str | None] | None:
    if not isinstance(block, dict):
        return None
    return _text(block.get("name")), _text(block.get("email"))


def _github_author(raw: dict) -> CommitAuthor | None:
    # API items nest the git author under "commit"; older stored
    # records carry a flat top-level "author" block instead.
    commit = raw.get("commit")
    fields = _author_block(commit.get("author")) if isinstance(commit, dict) else None
    if fields is None:
        fields = _author_block(raw.get("author"))
    if fields is None:
        return None
    return CommitAuthor(Platform.GITHUB, *fields)


def _gitlab_author(raw: dict) -> CommitAuthor | None:
    return CommitAuthor(Platform.GITLAB, _text(raw.get("author_name")), _text(raw.get("author_email")))


def _azure_devops_author(raw: dict) -> CommitAuthor | None:
    fields = _author_block(raw.get("author"))
    if fields is None:
        return None
    return CommitAuthor(Platform.AZURE_DEVOPS, *fields)


EXTRACTORS = {
    Platform.GITHUB: _github_author,
    Platform.GITLAB: _gitlab_author,
    Platform.AZURE_DEVOPS: _azure_devops_author,
}


def extract_author(raw, platform: Platform) -> CommitAuthor | None:
    """Pull the author fields out of a raw commit record for its platform."""
    if not isinstance(raw, dict):
        return None
    return EXTRACTORS[platform](raw)


def normalize(author: CommitAuthor | None) -> Identity | None:
    """Turn extracted author fields into an identity.

    Records without a name are dropped. A name without an email becomes a
    name-only identity (empty email) so the activity is still visible.
    Emails are lowercased; names are kept as-is.
    """
    if author is None or not author.name:
        return None
    email = (author.email or "").strip().lower()
    return Identity(author.name, email)


def identify(raw, platform: Platform) -> Identity | None:
    return normalize(extract_author(raw, platform))
