"""Glob-based ignore rules read from a user-editable rule file."""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Iterable, Iterator
from pathlib import Path, PurePath

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "ignore"})

DEFAULT_IGNORE_RULES = """# Smart Slideshow - ignore rules
# One glob pattern per line. Lines starting with '#' are comments.
# Patterns are tested against the full path, each path component,
# and each parent folder (written with a trailing '/').

# Thumbnail caches
**/.thumbnails/
**/Thumbs.db
**/.DS_Store

# NAS and system files
**/@eaDir/
**/desktop.ini

# Hidden folders
**/.*/

# Examples:
# private
# **/2023-05-15/
# screenshot_*.png
# *_draft.jpg
"""


def _iter_rule_lines(content: str) -> Iterator[str]:
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        yield line


def validate_pattern(pattern: str) -> str | None:
    """Return why ``pattern`` is rejected, or None when it is usable.

    ``**`` must form a whole path component, and every ``[`` must open a
    closed character class.
    """

    for run in re.finditer(r"\*{2,}", pattern):
        before = pattern[run.start() - 1] if run.start() > 0 else "/"
        after = pattern[run.end()] if run.end() < len(pattern) else "/"
        if before != "/" or after != "/":
            return "'**' must be a whole path component"

    index = 0
    while index < len(pattern):
        if pattern[index] == "[":
            close = index + 1
            if close < len(pattern) and pattern[close] in "!^":
                close += 1
            if close < len(pattern) and pattern[close] == "]":
                close += 1
            close = pattern.find("]", close)
            if close == -1:
                return "unclosed character class"
            index = close
        index += 1

    return None


class IgnoreFilter:
    """Compiled set of ignore globs used as a pure predicate by the scanner.

    Every valid pattern is folded into a single regular expression, so a
    lookup costs one regex match per candidate string regardless of how
    many rules the file holds.
    """

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        accepted: list[str] = []
        fragments: list[str] = []
        for pattern in patterns:
            error = validate_pattern(pattern)
            if error is not None:
                LOGGER.warning("ignore_pattern_invalid", extra={"pattern": pattern, "error": error})
                continue
            accepted.append(pattern)
            fragments.append(f"(?:{fnmatch.translate(pattern)})")

        self._patterns: tuple[str, ...] = tuple(accepted)
        self._matcher: re.Pattern[str] | None = re.compile("|".join(fragments)) if fragments else None

    @classmethod
    def from_content(cls, content: str) -> "IgnoreFilter":
        """Build a filter from rule-file text, skipping blanks and comments."""

        return cls(_iter_rule_lines(content))

    @classmethod
    def from_file(cls, path: Path) -> "IgnoreFilter":
        """Load rules from ``path``; a missing or unreadable file yields an empty filter."""

        if not path.exists():
            return cls()

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("ignore_file_unreadable", extra={"path": str(path), "error": str(exc)})
            return cls()

        rules = cls.from_content(content)
        LOGGER.info("ignore_rules_loaded", extra={"path": str(path), "pattern_count": len(rules.patterns)})
        return rules

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    @property
    def has_patterns(self) -> bool:
        return self._matcher is not None

    def is_ignored(self, path: str | PurePath, root: str | PurePath | None = None) -> bool:
        """Return True when the path, any component, or any parent folder matches a rule.

        With ``root`` given, components and parent folders are taken from the
        part of ``path`` below it, and parents are rendered root-relative
        (``/sub/.hidden/``), so folders above the scan root never match.
        """

        if self._matcher is None:
            return False

        text = str(path)
        match = self._matcher.match
        if match(text):
            return True

        pure = PurePath(text)
        scoped = pure
        if root is not None:
            try:
                scoped = pure.relative_to(root)
            except ValueError:
                root = None

        for component in scoped.parts:
            if match(component):
                return True

        # Folder rules such as ``**/@eaDir/`` are written with a trailing separator.
        for parent in scoped.parents:
            if root is not None:
                if not parent.parts:
                    continue
                rendered = f"/{parent.as_posix()}/"
            else:
                rendered = str(parent)
                if not rendered.endswith(("/", "\\")):
                    rendered = f"{rendered}/"
            if match(rendered):
                return True

        return False


def ensure_ignore_file(path: Path) -> Path:
    """Create ``path`` with the default rule set when it does not exist yet."""

    if path.exists():
        return path

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(DEFAULT_IGNORE_RULES, encoding="utf-8")
    except OSError as exc:
        LOGGER.error("ignore_file_create_failed", extra={"path": str(path), "error": str(exc)})
        return path

    LOGGER.info("ignore_file_created", extra={"path": str(path)})
    return path


def append_ignore_rule(path: Path, pattern: str) -> None:
    """Append a single pattern line to the rule file, creating it if needed."""

    path.parent.mkdir(parents=True, exist_ok=True)
    needs_newline = False
    if path.exists():
        existing = path.read_bytes()
        needs_newline = bool(existing) and not existing.endswith(b"\n")

    with path.open("a", encoding="utf-8") as handle:
        if needs_newline:
            handle.write("\n")
        handle.write(f"{pattern}\n")

    LOGGER.info("ignore_rule_appended", extra={"path": str(path), "pattern": pattern})


__all__ = ["DEFAULT_IGNORE_RULES", "IgnoreFilter", "append_ignore_rule", "ensure_ignore_file", "validate_pattern"]
