#!/usr/bin/env python3
# ============================================================
#   QUOTE MARKER — DOCUMENT TREE
# ============================================================
"""
Natural-language document tree consumed by the quote marker.

The engine in quote_marker.py only relies on a small capability:

  • every node has a `type` string ("ParagraphNode", "WordNode", ...)
  • parent nodes expose ordered `children`
  • leaf nodes expose their literal `value`
  • every node carries a `position` (start/end line, column, offset)

Any tokenizer that produces nodes with those attributes can feed the engine.
This module ships one: parse_text(), which splits paragraphs on blank lines,
asks spaCy's rule-based sentencizer for sentence boundaries, and then cuts
each sentence into words, punctuation, symbols, whitespace and sources
(URLs / e-mail addresses).
"""

import re
import threading
import unicodedata
from bisect import bisect_right
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterator, NamedTuple

import spacy

ROOT = "RootNode"
PARAGRAPH = "ParagraphNode"
SENTENCE = "SentenceNode"
WORD = "WordNode"
TEXT = "TextNode"
PUNCTUATION = "PunctuationNode"
SYMBOL = "SymbolNode"
WHITESPACE = "WhiteSpaceNode"
SOURCE = "SourceNode"

# Characters the sentencizer treats as sentence enders. Trailing punctuation
# after one of these stays with the sentence unless whitespace separates it.
SENTENCE_TERMINALS = {".", "!", "?", "…", "‽"}

# Line endings: Unix, Windows and old Mac.
LINE_BREAK = r"(?:\r\n|\r(?!\n)|\n)"
LINE_BREAK_RE = re.compile(LINE_BREAK)

# A blank line (optionally holding spaces/tabs) separates paragraphs.
PARAGRAPH_BREAK = re.compile(rf"{LINE_BREAK}[ \t]*{LINE_BREAK}\s*")

_SOURCE_PATTERN = (
    r"(?:(?:https?|ftp)://|www\.)[^\s<>\"'“”‘’]*[^\s<>\"'“”‘’.,;:!?)\]]"
    r"|[\w.+-]+@[\w-]+(?:\.[\w-]+)+"
)
_WORD_PATTERN = r"\w+(?:['’\-]\w+)*"

TOKEN_RE = re.compile(
    rf"(?P<source>{_SOURCE_PATTERN})"
    rf"|(?P<word>{_WORD_PATTERN})"
    r"|(?P<space>\s+)"
    r"|(?P<other>.)",
    re.DOTALL,
)

# Inside a word, these split the word into text and punctuation children.
WORD_INNER_PUNCTUATION = re.compile(r"(['’\-])")


# ============================================================
# POSITIONS
# ============================================================

class Point(NamedTuple):
    """A place in the source: 1-based line and column, 0-based offset."""
    line: int
    column: int
    offset: int


class Position(NamedTuple):
    start: Point
    end: Point

    def __str__(self) -> str:
        return (
            f"{self.start.line}:{self.start.column}-"
            f"{self.end.line}:{self.end.column}"
        )


class Locator:
    """Convert character offsets in `text` into line/column points."""

    def __init__(self, text: str):
        self._line_starts = [0]
        for match in LINE_BREAK_RE.finditer(text):
            self._line_starts.append(match.end())

    def point(self, offset: int) -> Point:
        line_index = bisect_right(self._line_starts, offset) - 1
        column = offset - self._line_starts[line_index] + 1
        return Point(line_index + 1, column, offset)

    def position(self, start: int, end: int) -> Position:
        return Position(self.point(start), self.point(end))


# ============================================================
# NODES
# ============================================================

@dataclass
class Literal:
    """A leaf node holding text: words' text, punctuation, whitespace, ..."""
    type: str
    value: str
    position: Position | None = None


@dataclass
class Parent:
    """A node with ordered children: root, paragraph, sentence, word."""
    type: str
    children: list = field(default_factory=list)
    position: Position | None = None


def to_string(node) -> str:
    """Return the text a node covers."""
    value = getattr(node, "value", None)
    if value is not None:
        return value
    return "".join(to_string(child) for child in getattr(node, "children", ()))


def iter_nodes(node, node_type: str, parent=None, index: int | None = None):
    """
    Yield (node, index, parent) for every descendant of `node` (including
    `node` itself) whose type is `node_type`, depth first, in document order.

    Matching nodes are not descended into.
    """
    if node.type == node_type:
        yield node, index, parent
        return
    for child_index, child in enumerate(getattr(node, "children", ()) or ()):
        yield from iter_nodes(child, node_type, node, child_index)


def iter_paragraphs(tree) -> Iterator:
    for node, _index, _parent in iter_nodes(tree, PARAGRAPH):
        yield node


def iter_punctuation(node) -> Iterator[tuple]:
    """Yield (punctuation, index, parent) under `node` in document order."""
    yield from iter_nodes(node, PUNCTUATION)


# ============================================================
# TOKENIZER
# ============================================================

_max_length_lock = threading.Lock()


@lru_cache(maxsize=1)
def get_sentencizer():
    """
    Build (once) a blank English spaCy pipeline with the rule-based
    sentencizer. No statistical model is needed, so nothing is downloaded.
    """
    nlp = spacy.blank("en")
    nlp.add_pipe("sentencizer")
    return nlp


def sentence_spans(text: str) -> list[tuple[int, int]]:
    """
    Return (start, end) character spans of the sentences in `text`, with
    surrounding whitespace trimmed off each span.

    spaCy keeps punctuation that follows a sentence ender in the same
    sentence, so `He left. "Hi."` would leave the opening `"` dangling at the
    end of the first sentence. Punctuation separated from the ender by
    whitespace is moved to start the next sentence instead.
    """
    if not text.strip():
        return []

    nlp = get_sentencizer()
    # max_length guards parser/NER memory; the sentencizer has no such cost.
    with _max_length_lock:
        nlp.max_length = max(nlp.max_length, len(text) + 1)
    doc = nlp(text)
    starts = [sent.start for sent in doc.sents]

    adjusted = [starts[0]] if starts else []
    for boundary in starts[1:]:
        floor = adjusted[-1]
        new_boundary = boundary
        j = boundary - 1
        while j > floor and doc[j].is_punct and doc[j].text not in SENTENCE_TERMINALS:
            if doc[j - 1].whitespace_:
                new_boundary = j
            j -= 1
        adjusted.append(new_boundary)

    spans: list[tuple[int, int]] = []
    bounds = adjusted + [len(doc)]
    for first, stop in zip(bounds, bounds[1:]):
        if first >= stop:
            continue
        start_char = doc[first].idx
        last = doc[stop - 1]
        end_char = last.idx + len(last.text)

        # Trim whitespace tokens spaCy attached to either end
        while start_char < end_char and text[start_char].isspace():
            start_char += 1
        while end_char > start_char and text[end_char - 1].isspace():
            end_char -= 1
        if start_char < end_char:
            spans.append((start_char, end_char))
    return spans


def _whitespace(text: str, start: int, end: int, locator: Locator) -> Literal:
    return Literal(WHITESPACE, text[start:end], locator.position(start, end))


def _fill_gaps(text: str, start: int, end: int, spans, build, locator: Locator) -> list:
    """
    Build nodes for `spans` inside [start, end) using `build(span_start,
    span_end)`, with whitespace nodes for the text between them.
    """
    children = []
    cursor = start
    for span_start, span_end in spans:
        if span_start > cursor:
            children.append(_whitespace(text, cursor, span_start, locator))
        children.append(build(span_start, span_end))
        cursor = span_end
    if cursor < end:
        children.append(_whitespace(text, cursor, end, locator))
    return children


def _build_word(text: str, start: int, end: int, locator: Locator) -> Parent:
    children = []
    offset = start
    for piece in WORD_INNER_PUNCTUATION.split(text[start:end]):
        if not piece:
            continue
        piece_end = offset + len(piece)
        node_type = PUNCTUATION if WORD_INNER_PUNCTUATION.fullmatch(piece) else TEXT
        children.append(Literal(node_type, piece, locator.position(offset, piece_end)))
        offset = piece_end
    return Parent(WORD, children, locator.position(start, end))


def _build_sentence(text: str, start: int, end: int, locator: Locator) -> Parent:
    children = []
    for match in TOKEN_RE.finditer(text, start, end):
        kind = match.lastgroup
        m_start, m_end = match.span()
        value = match.group()
        position = locator.position(m_start, m_end)

        if kind == "word":
            children.append(_build_word(text, m_start, m_end, locator))
        elif kind == "source":
            children.append(Literal(SOURCE, value, position))
        elif kind == "space":
            children.append(Literal(WHITESPACE, value, position))
        elif unicodedata.category(value).startswith("P"):
            children.append(Literal(PUNCTUATION, value, position))
        else:
            children.append(Literal(SYMBOL, value, position))
    return Parent(SENTENCE, children, locator.position(start, end))


def _build_paragraph(text: str, start: int, end: int, locator: Locator) -> Parent:
    spans = [
        (start + s_start, start + s_end)
        for s_start, s_end in sentence_spans(text[start:end])
    ]
    children = _fill_gaps(
        text,
        start,
        end,
        spans,
        lambda s, e: _build_sentence(text, s, e, locator),
        locator,
    )
    return Parent(PARAGRAPH, children, locator.position(start, end))


def paragraph_spans(text: str) -> list[tuple[int, int]]:
    """Return (start, end) spans of the non-blank paragraphs in `text`."""
    spans = []
    cursor = 0
    for match in PARAGRAPH_BREAK.finditer(text):
        spans.append((cursor, match.start()))
        cursor = match.end()
    spans.append((cursor, len(text)))

    trimmed = []
    for start, end in spans:
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        if start < end:
            trimmed.append((start, end))
    return trimmed


def parse_text(text: str) -> Parent:
    """
    Tokenize `text` into a RootNode of paragraphs, sentences and words.

    Example:
        >>> root = parse_text("Isn't it?")
        >>> [child.type for child in root.children[0].children[0].children]
        ['WordNode', 'WhiteSpaceNode', 'WordNode', 'PunctuationNode']
    """
    locator = Locator(text)
    children = _fill_gaps(
        text,
        0,
        len(text),
        paragraph_spans(text),
        lambda s, e: _build_paragraph(text, s, e, locator),
        locator,
    )
    return Parent(ROOT, children, locator.position(0, len(text)))
