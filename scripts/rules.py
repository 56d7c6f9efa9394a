"""Per-platform email exclusion rules."""

import logging
import re
from enum import Enum
from pathlib import Path

from identity import Platform, parse_platform

log = logging.getLogger(__name__)

# "/pattern/flags" as written in JavaScript-style regex literals
DELIMITED = re.compile(r"^/(?P<body>.*)/[a-z]*$", re.DOTALL)


class Classification(str, Enum):
    INCLUDED = "included"
    EXCLUDED = "excluded"


def strip_delimiters(text: str) -> str:
    """Remove surrounding /.../flags delimiters if present."""
    match = DELIMITED.match(text)
    if match:
        return match.group("body")
    return text


def compile_pattern(text: str) -> re.Pattern:
    """Compile a rule, always case-insensitive. Raises re.error if invalid."""
    return re.compile(strip_delimiters(text.strip()), re.IGNORECASE)


class ExclusionRules:
    """Ordered exclusion patterns for each platform."""

    def __init__(self):
        self._patterns: dict[Platform, list[re.Pattern]] = {}

    def configure(self, platform, pattern: str = None, pattern_file=None) -> int:
        """Replace the platform's rules with a single pattern and/or a file of patterns.

        Returns the number of patterns loaded.
        """
        platform = parse_platform(platform)
        if platform is None:
            return 0
        self._patterns[platform] = []
        if pattern:
            self.add_pattern(platform, pattern)
        if pattern_file:
            self.load_file(platform, pattern_file)
        return len(self._patterns[platform])

    def add_pattern(self, platform, text: str) -> bool:
        platform = parse_platform(platform)
        if platform is None:
            return False
        try:
            compiled = compile_pattern(text)
        except re.error as e:
            log.warning(f"Invalid regex pattern {text!r} for {platform.label}: {e}")
            return False
        self._patterns.setdefault(platform, []).append(compiled)
        log.debug(f"Added exclusion pattern for {platform.label}: {compiled.pattern}")
        return True

    def load_file(self, platform, path) -> int:
        """Load newline-separated patterns. Bad lines are skipped."""
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            log.error(f"Error reading regex file {path}: {e}")
            return 0

        loaded = 0
        for line in content.splitlines():
            if not line.strip():
                continue
            if self.add_pattern(platform, line):
                loaded += 1
        log.info(f"Loaded {loaded} exclusion patterns from {path}")
        return loaded

    def patterns(self, platform) -> list[re.Pattern]:
        platform = parse_platform(platform)
        return list(self._patterns.get(platform, []))

    def is_excluded(self, email: str, platform) -> bool:
        if not email:
            return False
        patterns = self._patterns.get(parse_platform(platform))
        if not patterns:
            return False
        return any(p.search(email) for p in patterns)

    def classify(self, email: str, platform) -> Classification:
        if self.is_excluded(email, platform):
            return Classification.EXCLUDED
        return Classification.INCLUDED
