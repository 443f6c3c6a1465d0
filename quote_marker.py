#!/usr/bin/env python3
# ============================================================
#   QUOTE MARKER — ENGINE
# ============================================================
"""
Check quotes and apostrophes against a preferred style.

The marker walks a natural-language document tree (see quote_tree.py)
paragraph by paragraph and reports every quotation mark or apostrophe that
does not match the preferred style ("smart" curly quotes or "straight"
typewriter quotes) at its level of nesting.

Apostrophes are known as well: the marker prefers `’` when the preferred
style is smart, and `'` when it is straight.

Marker strings in `smart` and `straight` can be one or two characters. With
two, the first character is the opening quote and the second the closing
quote at that level. With one, both are that character.

The order in which the preferred markers are listed decides which marker to
use at which level of nesting. To prefer `‘’` at the first level and `“”` at
the second, pass smart=("‘’", "“”"). When quotes nest deeper than the list is
long the markers wrap around: with smart=("«»", "‹›") a third level uses
double guillemets again, a fourth single ones, and so on.
"""

import argparse
import json
import logging
import os
import re
import sys
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from io import BytesIO
from pathlib import Path
from zipfile import BadZipFile

from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from quote_tree import (
    PARAGRAPH,
    PUNCTUATION,
    SOURCE,
    WORD,
    Position,
    iter_paragraphs,
    iter_punctuation,
    parse_text,
    to_string,
)

logger = logging.getLogger(__name__)

DIAGNOSTIC_SOURCE = "quote-marker"
DEFAULT_DOCS_URL = "https://github.com/retextjs/retext-quotes#readme"
DOCS_URL = os.getenv("QUOTE_MARKER_DOCS_URL", DEFAULT_DOCS_URL)

STRAIGHT_APOSTROPHE = "'"
SMART_APOSTROPHE = "’"

# The single glyphs that can be an apostrophe or a single quotation mark
AMBIGUOUS_GLYPHS = {STRAIGHT_APOSTROPHE, SMART_APOSTROPHE}

DEFAULT_SMART = ("“”", "‘’")
DEFAULT_STRAIGHT = ('"', "'")

DECADE_RE = re.compile(r"^\d\ds$")

# What python-docx raises for bytes that are not a Word document
DOCX_READ_ERRORS = (PackageNotFoundError, BadZipFile)


# ============================================================
# CONFIGURATION
# ============================================================

class Family(str, Enum):
    SMART = "smart"
    STRAIGHT = "straight"


class MarkerKind(Enum):
    OPEN = "open"
    CLOSE = "close"
    APOSTROPHE = "apostrophe"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class QuoteConfig:
    """
    Configuration for one quote-marking run.

    preferred:
        Family.SMART (default) or Family.STRAIGHT. Plain strings are accepted.
    smart:
        Markers seen as smart, outermost level first (default ("“”", "‘’")).
    straight:
        Markers seen as straight, outermost level first (default ('"', "'")).
    """
    preferred: Family = Family.SMART
    smart: tuple[str, ...] = DEFAULT_SMART
    straight: tuple[str, ...] = DEFAULT_STRAIGHT

    def __post_init__(self):
        object.__setattr__(self, "preferred", Family(self.preferred))
        for name in ("smart", "straight"):
            markers = tuple(getattr(self, name))
            if not markers:
                raise ValueError(f"`{name}` needs at least one marker")
            for marker in markers:
                if not isinstance(marker, str) or len(marker) not in (1, 2):
                    raise ValueError(
                        f"Invalid {name} marker {marker!r}: expected one or two characters"
                    )
            object.__setattr__(self, name, markers)

    def markers_for(self, family: Family) -> tuple[str, ...]:
        return self.smart if family is Family.SMART else self.straight

    @classmethod
    def from_dict(cls, overrides: dict | None = None) -> "QuoteConfig":
        """
        Build a config from a plain dict, e.g. parsed JSON or form fields.
        Unknown keys and None values are ignored.
        """
        known = {"preferred", "smart", "straight"}
        values = {
            key: value
            for key, value in (overrides or {}).items()
            if key in known and value is not None
        }
        return cls(**values)


# ============================================================
# MARKERS
# ============================================================

@dataclass(frozen=True)
class Marker:
    """A classified quote or apostrophe: its family, configured pair and role."""
    family: Family
    glyph_pair: str
    kind: MarkerKind


def _contains(value: str, markers, family: Family) -> Marker | None:
    for marker in markers:
        both = len(marker) > 1
        if marker[0] == value:
            kind = MarkerKind.OPEN if both else MarkerKind.UNRESOLVED
            return Marker(family, marker, kind)
        if both and marker[1] == value:
            return Marker(family, marker, MarkerKind.CLOSE)
    return None


def classify(value: str, straight, smart) -> Marker | None:
    """
    Find `value` in the straight markers, then in the smart markers.

    Returns None when the value is not a configured marker at all; such
    punctuation is ignored by the marker.
    """
    return _contains(value, straight, Family.STRAIGHT) or _contains(
        value, smart, Family.SMART
    )


class NestingStack:
    """Open quote markers within one paragraph, innermost last."""

    def __init__(self, markers=None):
        self._markers: list[Marker] = list(markers or [])

    def __len__(self) -> int:
        return len(self._markers)

    def __iter__(self):
        return iter(self._markers)

    def push(self, marker: Marker) -> None:
        self._markers.append(marker)

    def pop(self) -> Marker | None:
        # Closing quotes can outnumber opening ones in sloppy text
        if not self._markers:
            return None
        return self._markers.pop()

    def top(self) -> Marker | None:
        return self._markers[-1] if self._markers else None

    def can_open(self, marker: Marker) -> bool:
        """Whether `marker` would open a new level rather than close the top one."""
        top = self.top()
        return top is None or top.glyph_pair != marker.glyph_pair


def resolve_generic_kind(stack: NestingStack, marker: Marker) -> MarkerKind:
    return MarkerKind.OPEN if stack.can_open(marker) else MarkerKind.CLOSE


def infer_kind(stack: NestingStack, marker: Marker, node, index: int, parent) -> Marker:
    """
    Decide whether an ambiguous marker is an apostrophe, an opening quote or
    a closing quote, from its neighbours.

    For `'` and `’`:
      • inside a word ("isn't") it is an apostrophe
      • after a word or source ending in "s" it is an apostrophe, unless a
        quote with the same marker is open ("Mr. Jones' golf clubs" vs.
        "'Mr. Jones' golf clubs"); after any other word it closes
      • before a decade ("’80s") it is an apostrophe; before any other word
        it opens
    Everything else opens when nothing with the same marker is open on top
    of the stack, and closes otherwise.
    """
    if node is None or node.type != PUNCTUATION:
        return marker

    value = to_string(node)

    if value in AMBIGUOUS_GLYPHS:
        if parent.type == WORD:
            return replace(marker, kind=MarkerKind.APOSTROPHE)

        siblings = parent.children
        previous = siblings[index - 1] if index > 0 else None
        following = siblings[index + 1] if index + 1 < len(siblings) else None

        if previous is not None and previous.type in (WORD, SOURCE):
            before = to_string(previous)
            if before[-1:].lower() == "s" and stack.can_open(marker):
                return replace(marker, kind=MarkerKind.APOSTROPHE)
            return replace(marker, kind=MarkerKind.CLOSE)

        if following is not None and following.type == WORD:
            if DECADE_RE.match(to_string(following)):
                return replace(marker, kind=MarkerKind.APOSTROPHE)
            return replace(marker, kind=MarkerKind.OPEN)

    return replace(marker, kind=resolve_generic_kind(stack, marker))


def expected_marker(stack: NestingStack, kind: MarkerKind, config: QuoteConfig) -> str:
    """
    The marker the preferred style calls for.

    Opening markers must be pushed before calling this and closing markers
    popped after, so both see the depth of the level they belong to.
    """
    if kind is MarkerKind.APOSTROPHE:
        if config.preferred is Family.SMART:
            return SMART_APOSTROPHE
        return STRAIGHT_APOSTROPHE

    markers = config.markers_for(config.preferred)
    expected = markers[(len(stack) + 1) % len(markers)]
    if len(expected) > 1:
        expected = expected[0] if kind is MarkerKind.OPEN else expected[1]
    return expected


# ============================================================
# DIAGNOSTICS
# ============================================================

@dataclass(frozen=True)
class QuoteDiagnostic:
    """A quote or apostrophe that does not match the preferred style."""
    position: Position
    rule_id: str
    actual: str
    expected: tuple[str, ...]
    message: str
    source: str = DIAGNOSTIC_SOURCE
    url: str = DOCS_URL

    def __str__(self) -> str:
        return f"{self.position}: {self.message}"

    def to_dict(self) -> dict:
        start, end = self.position
        return {
            "location": {
                "start": start._asdict(),
                "end": end._asdict(),
            },
            "rule_id": self.rule_id,
            "source": self.source,
            "message": self.message,
            "actual": self.actual,
            "expected": list(self.expected),
            "url": self.url,
        }


def emit(node, marker: Marker, actual: str, expected: str, preferred: Family) -> QuoteDiagnostic | None:
    """Return a diagnostic for `node` when `actual` is not `expected`."""
    if actual == expected:
        return None

    rule_id = "apostrophe" if marker.kind is MarkerKind.APOSTROPHE else "quote"

    if marker.family is preferred:
        message = f"Expected `{expected}` to be used at this level of nesting, not `{actual}`"
    else:
        message = f"Expected a {preferred.value} {rule_id}: `{expected}`, not `{actual}`"

    return QuoteDiagnostic(
        position=node.position,
        rule_id=rule_id,
        actual=actual,
        expected=(expected,),
        message=message,
    )


# ============================================================
# ENGINE
# ============================================================

def check_paragraph(paragraph, config: QuoteConfig) -> list[QuoteDiagnostic]:
    """
    Check every quote and apostrophe in one paragraph.

    Nesting never carries over between paragraphs: each call starts with an
    empty stack, and quotes still open at the end are not reported.
    """
    stack = NestingStack()
    diagnostics: list[QuoteDiagnostic] = []

    for node, index, parent in iter_punctuation(paragraph):
        if parent is None or index is None:
            continue

        actual = to_string(node)
        marker = classify(actual, config.straight, config.smart)
        if marker is None:
            continue

        if actual in AMBIGUOUS_GLYPHS or marker.kind is MarkerKind.UNRESOLVED:
            marker = infer_kind(stack, marker, node, index, parent)

        if marker.kind is MarkerKind.OPEN:
            stack.push(marker)

        expected = expected_marker(stack, marker.kind, config)

        # Mismatched pairs such as `“‘this”’` are popped one at a time,
        # whichever marker sits on top.
        if marker.kind is MarkerKind.CLOSE:
            stack.pop()

        diagnostic = emit(node, marker, actual, expected, config.preferred)
        if diagnostic is not None:
            logger.debug("%s (%s)", diagnostic, diagnostic.rule_id)
            diagnostics.append(diagnostic)

    return diagnostics


def check_tree(tree, config: QuoteConfig | None = None, max_workers: int | None = None) -> list[QuoteDiagnostic]:
    """
    Check all paragraphs in `tree` and return diagnostics in document order.

    Paragraphs are independent, so with max_workers > 1 they are checked on
    a thread pool. The result is sorted by source offset either way.
    """
    config = config or QuoteConfig()

    if tree.type == PARAGRAPH:
        paragraphs = [tree]
    else:
        paragraphs = list(iter_paragraphs(tree))

    logger.debug("Checking %d paragraph(s) with %s quotes preferred", len(paragraphs), config.preferred.value)

    if max_workers and max_workers > 1 and len(paragraphs) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(lambda p: check_paragraph(p, config), paragraphs))
    else:
        results = [check_paragraph(p, config) for p in paragraphs]

    diagnostics = [d for result in results for d in result]
    diagnostics.sort(key=lambda d: d.position.start.offset)

    logger.info("Quote marker found %d issue(s)", len(diagnostics))
    return diagnostics


def check_text(text: str, config: QuoteConfig | None = None, max_workers: int | None = None) -> list[QuoteDiagnostic]:
    """Tokenize plain text and check it."""
    return check_tree(parse_text(text), config, max_workers=max_workers)


def docx_to_text(docx_bytes: bytes) -> tuple[str, int]:
    """
    Read the non-empty paragraphs of a .docx, one paragraph per blank-line
    separated block. Returns (text, paragraph_count).
    """
    doc = Document(BytesIO(docx_bytes))
    paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]
    return "\n\n".join(paragraphs), len(paragraphs)


def check_docx_bytes(docx_bytes: bytes, config: QuoteConfig | None = None) -> tuple[list[QuoteDiagnostic], dict]:
    """
    High-level API for web/backend use.

    - Accepts a .docx file as raw bytes.
    - Returns (diagnostics, metadata_dict).

    Positions refer to the extracted text: line N is the N-th line of that
    text, where paragraphs are separated by one blank line.
    """
    text, paragraph_count = docx_to_text(docx_bytes)
    diagnostics = check_text(text, config)

    counts = Counter(d.rule_id for d in diagnostics)
    metadata = {
        "paragraphs": paragraph_count,
        "total": len(diagnostics),
        "issues": [
            {"rule_id": rule_id, "count": counts[rule_id]}
            for rule_id in ("quote", "apostrophe")
            if counts[rule_id] > 0
        ],
    }
    return diagnostics, metadata


# ============================================================
# COMMAND LINE
# ============================================================

def check_path(path: Path, config: QuoteConfig, max_workers: int | None = None) -> list[QuoteDiagnostic]:
    if path.suffix.lower() == ".docx":
        diagnostics, _metadata = check_docx_bytes(path.read_bytes(), config)
        return diagnostics
    return check_text(path.read_text(encoding="utf-8"), config, max_workers=max_workers)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check quotes and apostrophes in text or .docx files.",
    )

    parser.add_argument(
        "files",
        nargs="+",
        help="Paths to .txt/.md/.docx files to check",
    )

    parser.add_argument(
        "--preferred",
        default=os.getenv("QUOTE_MARKER_PREFERRED", Family.SMART.value),
        choices=[family.value for family in Family],
        help="Preferred quote style (default: smart)",
    )

    parser.add_argument(
        "--smart",
        nargs="+",
        help="Smart markers, outermost level first (default: “” ‘’)",
    )

    parser.add_argument(
        "--straight",
        nargs="+",
        help="Straight markers, outermost level first (default: \" ')",
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Check paragraphs on this many threads",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print diagnostics as JSON",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log progress to stderr",
    )

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = QuoteConfig.from_dict(
            {"preferred": args.preferred, "smart": args.smart, "straight": args.straight}
        )
    except ValueError as e:
        parser.error(str(e))

    status = 0
    report = {}

    for name in args.files:
        path = Path(name)
        try:
            diagnostics = check_path(path, config, max_workers=args.workers)
        except (OSError, UnicodeDecodeError, *DOCX_READ_ERRORS) as e:
            logger.warning("Could not read %s: %s", path, e)
            print(f"Error processing {path}: {e}", file=sys.stderr)
            status = 2
            continue

        if diagnostics and status == 0:
            status = 1

        if args.json:
            report[str(path)] = [d.to_dict() for d in diagnostics]
        else:
            for diagnostic in diagnostics:
                print(f"{path}:{diagnostic}")

    if args.json:
        print(json.dumps(report, ensure_ascii=False, indent=2))

    return status


if __name__ == "__main__":
    sys.exit(main())
