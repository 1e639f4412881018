"""Include / exclude / highlight patterns applied to line text."""
from __future__ import annotations

import re
from typing import List, Pattern, Sequence

from rich.text import Text

HIGHLIGHT_STYLE = "bold yellow"


def compile_patterns(
    patterns: Sequence[str] | None,
    *,
    regex: bool = False,
    ignore_case: bool = False,
) -> List[Pattern[str]]:
    """Compile literal (escaped) or regex patterns."""

    flags = re.IGNORECASE if ignore_case else 0
    compiled = []
    for pattern in patterns or ():
        compiled.append(re.compile(pattern if regex else re.escape(pattern), flags))
    return compiled


class LineFilter:
    """Decides which lines are shown and which spans are highlighted."""

    def __init__(
        self,
        include: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
        highlight: Sequence[str] | None = None,
        *,
        ignore_case: bool = False,
        regex: bool = False,
    ) -> None:
        self.include = compile_patterns(include, regex=regex, ignore_case=ignore_case)
        self.exclude = compile_patterns(exclude, regex=regex, ignore_case=ignore_case)
        self.highlight = compile_patterns(highlight, regex=regex, ignore_case=ignore_case)

    @classmethod
    def from_config(cls, config) -> "LineFilter":
        return cls(
            include=config.include,
            exclude=config.exclude,
            highlight=config.highlight,
            ignore_case=config.ignore_case,
            regex=config.regex,
        )

    def should_include(self, line: str) -> bool:
        """A line must match some include pattern (if any) and no exclude pattern."""

        if self.include and not any(p.search(line) for p in self.include):
            return False
        return not any(p.search(line) for p in self.exclude)

    def apply_highlighting(self, line: str) -> Text:
        text = Text(line)
        for pattern in self.highlight:
            text.highlight_regex(pattern, style=HIGHLIGHT_STYLE)
        return text
