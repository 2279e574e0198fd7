"""
Formatting normalizer for generated reports.

Intent:
    Model output varies in how it marks exhibits and headings. Downstream
    rendering expects one contract:
      - `**EXHIBIT N**` exhibit markers,
      - section names on their own bold line without a colon,
      - sub-headings as `**Name:** value`, each starting a line,
      - at most one blank line between blocks.

Design:
    `build_steps(template)` returns an ordered list of pure `str -> str`
    functions; `normalize_report` applies them in order. Heading names come
    from the template (or `DEFAULT_TEMPLATE`). Every step is case-insensitive
    and the chain is idempotent, so re-running it on normalized text is a
    no-op.

    Section and sub-heading names are scanned as a single alternation with
    longer names first, so a sub-heading that is a suffix of a section name
    ("Significance" in "Historical Significance") is never matched inside it.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import partial
import re
from typing import Callable, Optional

from backend.archive.domain import DEFAULT_TEMPLATE, ReportTemplate

Step = Callable[[str], str]

_EXHIBIT_RE = re.compile(
    r"(\*{1,2})?[ \t]*\bexhibit[ \t]*#?[ \t]*(\d+)"
    r"(?(1)(?:\*{0,2}[ \t]*:\*{0,2}|\*{0,2})|(?:[ \t]*:)?)",
    re.IGNORECASE,
)
_MARKER_PREFIX_RE = re.compile(r"[ \t]*(?:(?:\d+[.)]|[•\-*])[ \t]+)?")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

# A step can expose input for an earlier one (a heading pushed onto its own
# line by `bold_subheadings`); re-running the chain settles those cases.
MAX_PASSES = 5


class HeadingNames:
    """Section and sub-heading vocabulary of one template."""

    def __init__(self, template: Optional[ReportTemplate] = None) -> None:
        active = template or DEFAULT_TEMPLATE
        self.sections = [n for n in active.section_names if n.strip()]
        section_keys = {n.lower() for n in self.sections}
        self.subheadings = [n for n in active.subheading_names if n.strip() and n.lower() not in section_keys]
        self._section_keys = section_keys
        self._canonical = {n.lower(): n for n in self.subheadings + self.sections}
        self.token_re: Optional[re.Pattern[str]] = None
        self.section_marker_re: Optional[re.Pattern[str]] = None
        if self._canonical:
            names = _alternation(self._canonical.values())
            self.token_re = re.compile(
                r"(?P<lead>[ \t]*)(?P<pre>\*{0,2})(?<!\w)"
                rf"(?P<name>{names})(?!\w)"
                r"(?P<post>[ \t]*:\*{0,2}|\*{0,2}[ \t]*:|\*{0,2})(?P<trail>[ \t]*)",
                re.IGNORECASE,
            )
        if self.sections:
            self.section_marker_re = re.compile(
                r"^[ \t]*(?:\d+[.)]|[•\-*])[ \t]+"
                rf"(?=\*{{0,2}}(?:{_alternation(self.sections)})(?:\*\*|[ \t]*:|[ \t]*$))",
                re.IGNORECASE | re.MULTILINE,
            )

    def canonical(self, name: str) -> str:
        return self._canonical[name.lower()]

    def is_section(self, name: str) -> bool:
        return name.lower() in self._section_keys


def _alternation(names) -> str:
    return "|".join(re.escape(n) for n in sorted(names, key=len, reverse=True))


@dataclass(frozen=True)
class _Token:
    text: str
    canonical: str
    is_section: bool
    lead: str
    pre: str
    post: str
    trail: str
    line_prefix: str
    line_rest: str

    @property
    def has_colon(self) -> bool:
        return ":" in self.post

    @property
    def wrapped(self) -> bool:
        return self.pre == "**" and self.post == "**"

    @property
    def at_line_start(self) -> bool:
        return _MARKER_PREFIX_RE.fullmatch(self.line_prefix) is not None

    @property
    def has_rest(self) -> bool:
        return bool(self.line_rest.strip())

    @property
    def is_heading(self) -> bool:
        return self.has_colon or (self.is_section and self.wrapped)


def _token(names: HeadingNames, match: re.Match[str]) -> _Token:
    source = match.string
    line_begin = source.rfind("\n", 0, match.start()) + 1
    line_end = source.find("\n", match.end())
    if line_end < 0:
        line_end = len(source)
    name = match.group("name")
    return _Token(
        text=match.group(0),
        canonical=names.canonical(name),
        is_section=names.is_section(name),
        lead=match.group("lead"),
        pre=match.group("pre"),
        post=match.group("post"),
        trail=match.group("trail"),
        line_prefix=source[line_begin : match.start("pre")],
        line_rest=source[match.end() : line_end],
    )


def _rewrite_tokens(text: str, names: HeadingNames, decide: Callable[[_Token], Optional[str]]) -> str:
    if names.token_re is None:
        return text

    def _sub(match: re.Match[str]) -> str:
        replacement = decide(_token(names, match))
        return match.group(0) if replacement is None else replacement

    return names.token_re.sub(_sub, text)


# ----------------------------- Steps ------------------------------------------


def canonicalize_exhibits(text: str) -> str:
    """`Exhibit #3`, `**exhibit 3:**`, ... -> `**EXHIBIT 3**`."""
    return _EXHIBIT_RE.sub(lambda m: f"**EXHIBIT {m.group(2)}**", text)


def split_shared_lines(text: str, names: HeadingNames) -> str:
    """Break a line holding two headings into two paragraphs.

    A bare section name opening the line counts as a heading when the next
    heading follows it directly (`Preservation Recommendations: ...`).
    """
    token_re = names.token_re
    if token_re is None:
        return text

    def _line_has_heading(prefix: str) -> bool:
        for match in token_re.finditer(prefix):
            found = _token(names, match)
            if found.is_heading:
                return True
            if found.is_section and found.at_line_start and match.end() == len(prefix):
                return True
        return False

    def decide(token: _Token) -> Optional[str]:
        if not token.is_heading or token.at_line_start:
            return None
        if not _line_has_heading(token.line_prefix):
            return None
        return "\n\n" + token.text[len(token.lead) :]

    return _rewrite_tokens(text, names, decide)


def isolate_sections(text: str, names: HeadingNames) -> str:
    """Put bold or stand-alone section names on their own bold line."""

    def decide(token: _Token) -> Optional[str]:
        if not token.is_section or token.has_colon:
            return None
        standalone = token.at_line_start and not token.has_rest
        if not (token.wrapped or standalone):
            return None
        before = token.lead if token.at_line_start else "\n\n"
        after = "\n\n" if token.has_rest else ""
        return f"{before}**{token.canonical}**{after}"

    return _rewrite_tokens(text, names, decide)


def strip_section_markers(text: str, names: HeadingNames) -> str:
    """Drop `1.`, `-`, `•` or `*` list markers in front of section names."""
    if names.section_marker_re is None:
        return text
    return names.section_marker_re.sub("", text)


def drop_section_colons(text: str, names: HeadingNames) -> str:
    """`Section:` -> `**Section**` followed by a blank line."""

    def decide(token: _Token) -> Optional[str]:
        if not token.is_section or not token.has_colon:
            return None
        before = token.lead if token.at_line_start else "\n\n"
        return f"{before}**{token.canonical}**\n\n"

    return _rewrite_tokens(text, names, decide)


def bold_subheadings(text: str, names: HeadingNames) -> str:
    """`name: value` -> `**Name:** value`, always starting a line."""

    def decide(token: _Token) -> Optional[str]:
        if token.is_section or not token.has_colon:
            return None
        before = token.lead if token.at_line_start else "\n"
        after = " " if token.has_rest else ""
        return f"{before}**{token.canonical}:**{after}"

    return _rewrite_tokens(text, names, decide)


def collapse_blank_lines(text: str) -> str:
    return _BLANK_RUN_RE.sub("\n\n", text)


def build_steps(template: Optional[ReportTemplate] = None) -> list[Step]:
    names = HeadingNames(template)
    return [
        canonicalize_exhibits,
        partial(split_shared_lines, names=names),
        partial(isolate_sections, names=names),
        partial(strip_section_markers, names=names),
        partial(drop_section_colons, names=names),
        partial(bold_subheadings, names=names),
        collapse_blank_lines,
    ]


def normalize_report(text: str, template: Optional[ReportTemplate] = None) -> str:
    """Apply the chain until the text stops changing (at most MAX_PASSES runs)."""
    steps = build_steps(template)
    for _ in range(MAX_PASSES):
        previous = text
        for step in steps:
            text = step(text)
        if text == previous:
            break
    return text


__all__ = [
    "HeadingNames",
    "canonicalize_exhibits",
    "split_shared_lines",
    "isolate_sections",
    "strip_section_markers",
    "drop_section_colons",
    "bold_subheadings",
    "collapse_blank_lines",
    "build_steps",
    "normalize_report",
]
