"""Inline codec: text runs to decorated Markdown plus span records, and back.

Both directions keep offsets in the *plain* text of a block (decoration
characters never count), so a span recorded while encoding addresses exactly
the characters the decoder recovers.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from docsidecar.schemas.sidecar import SpanFormatting
from docsidecar.schemas.tree import Mark, MarkType, TextNode, plain_text

# ASCII punctuation a backslash may escape.
_ESCAPABLE = frozenset("!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~")
_UNESCAPE_RE = re.compile(r"\\([!-/:-@\[-`{-~])")
_SPECIAL_RE = re.compile(r"[\\`*\[\]~]")
_ORDERED_START_RE = re.compile(r"\d+(?=[.)](?:\s|$))")
_BLOCK_START_RE = re.compile(r"#{1,6}(?:\s|$)|[-+*](?:\s|$)|>|-{3,}\s*$|_{3,}\s*$|\||<!--")
_RAW_TARGET_RE = re.compile(r"\(([^\s()<>]*)\)")
_SAFE_TARGET_RE = re.compile(r"[^\s()<>\\]+")
_BACKTICKS_RE = re.compile(r"`+")

_WRAPPERS = {MarkType.BOLD: "**", MarkType.ITALIC: "*", MarkType.STRIKE: "~~"}
# Tried in this order at every position; "**" must win over "*".
_EMPHASIS = (("**", MarkType.BOLD), ("~~", MarkType.STRIKE), ("*", MarkType.ITALIC))
SPAN_MARKS = (
    MarkType.TEXT_STYLE,
    MarkType.HIGHLIGHT,
    MarkType.UNDERLINE,
    MarkType.SUPERSCRIPT,
    MarkType.SUBSCRIPT,
)
_TEXT_STYLE_ATTRS = (("fontFamily", "font_family"), ("fontSize", "font_size"), ("color", "color"))
MAX_NESTING = 12


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def escape_text(text: str) -> str:
    return _SPECIAL_RE.sub(r"\\\g<0>", text)


def unescape(text: str) -> str:
    return _UNESCAPE_RE.sub(r"\1", text)


def escape_block_start(line: str) -> str:
    """Keep a paragraph line from being read back as a heading, list, quote, rule or table.

    Leading spaces are kept as text; the marker check applies to what follows them.
    """
    rest = line.lstrip(" ")
    lead = line[: len(line) - len(rest)]
    match = _ORDERED_START_RE.match(rest)
    if match:
        return f"{lead}{rest[:match.end()]}\\{rest[match.end():]}"
    if _BLOCK_START_RE.match(rest):
        return f"{lead}\\{rest}"
    return line


def code_span(text: str) -> str:
    longest = max((len(run) for run in _BACKTICKS_RE.findall(text)), default=0)
    fence = "`" * (longest + 1)
    if text.startswith("`") or text.endswith("`") or (
        len(text) >= 2 and text[0] == " " and text[-1] == " " and text.strip()
    ):
        text = f" {text} "
    return f"{fence}{text}{fence}"


def link_target(href: str) -> str:
    if href and _SAFE_TARGET_RE.fullmatch(href):
        return href
    escaped = href.replace("\\", "\\\\").replace("<", "\\<").replace(">", "\\>")
    return f"<{escaped}>"


def escape_alt(alt: str) -> str:
    return re.sub(r"[\\\[\]]", r"\\\g<0>", alt)


def escape_title(title: str) -> str:
    return re.sub(r'[\\"]', r"\\\g<0>", title)


def decorate(text: str, marks: Sequence[Mark], line_start: bool = False) -> str:
    """Wrap ``text`` for each Markdown-expressible mark; the last mark ends up outermost.

    Delimiters enclose the whole text, edge whitespace included, so marks on
    blanks survive. Inline code is applied first whatever its position, since
    code content is literal. With ``line_start`` set, an outermost italic
    opener followed by a blank would read as a bullet marker, so the leading
    blanks are written before it instead.
    """
    kinds = {mark.type for mark in marks}
    decorated = code_span(text) if MarkType.CODE in kinds else escape_text(text)
    wrapping = [mark for mark in marks if mark.type in _WRAPPERS or mark.type == MarkType.LINK]
    for index, mark in enumerate(wrapping):
        if mark.type == MarkType.LINK:
            href = str((mark.attrs or {}).get("href") or "")
            decorated = f"[{decorated}]({link_target(href)})"
            continue
        delimiter = _WRAPPERS[mark.type]
        outermost = index == len(wrapping) - 1
        if line_start and outermost and delimiter == "*" and decorated[:1].isspace():
            core = decorated.lstrip()
            if core:
                lead = decorated[: len(decorated) - len(core)]
                decorated = f"{lead}{delimiter}{core}{delimiter}"
            continue
        decorated = f"{delimiter}{decorated}{delimiter}"
    return decorated


def span_style(marks: Sequence[Mark]) -> Dict[str, Any]:
    """Collect the marks Markdown cannot express as span fields."""
    style: Dict[str, Any] = {}
    for mark in marks:
        attrs = mark.attrs or {}
        if mark.type == MarkType.TEXT_STYLE:
            for attr, field in _TEXT_STYLE_ATTRS:
                value = attrs.get(attr)
                if value is not None and value != "":
                    style[field] = value
        elif mark.type == MarkType.HIGHLIGHT:
            style["background_color"] = attrs.get("color") or ""
        elif mark.type == MarkType.UNDERLINE:
            style["underline"] = True
        elif mark.type == MarkType.SUPERSCRIPT:
            style["superscript"] = True
        elif mark.type == MarkType.SUBSCRIPT:
            style["subscript"] = True
    return style


def encode_inline(nodes: Sequence[Any]) -> Tuple[str, List[SpanFormatting]]:
    """Return the decorated line for a block's inline content and its span records."""
    parts: List[str] = []
    spans: List[SpanFormatting] = []
    position = 0
    for node in nodes:
        if isinstance(node, TextNode):
            text, marks = node.text, node.marks
        else:
            text, marks = plain_text(node), []
        if not text:
            continue
        line_start = not "".join(parts).strip()
        parts.append(decorate(text, marks, line_start=line_start))
        style = span_style(marks)
        if style:
            spans.append(SpanFormatting(start=position, end=position + len(text), **style))
        position += len(text)
    return "".join(parts), spans


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Run:
    text: str
    marks: Tuple[Mark, ...] = ()

    def with_outer(self, mark: Mark) -> "_Run":
        return _Run(self.text, self.marks + (mark,))


class _InlineParser:
    """Recursive descent over one decorated line.

    ``_parse(start, closer, depth)`` depends only on its arguments, so results
    are memoised; unmatched delimiters fall back to literal text.
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self._memo: Dict[Tuple[int, Optional[str], int], Tuple[List[_Run], int, bool]] = {}

    def parse(self) -> List[_Run]:
        runs, _, _ = self._parse(0, None, 0)
        return runs

    def _parse(self, start: int, closer: Optional[str], depth: int) -> Tuple[List[_Run], int, bool]:
        key = (start, closer, depth)
        if key not in self._memo:
            self._memo[key] = self._scan(start, closer, depth)
        return self._memo[key]

    def _scan(self, i: int, closer: Optional[str], depth: int) -> Tuple[List[_Run], int, bool]:
        source = self.source
        runs: List[_Run] = []
        buf: List[str] = []

        def flush() -> None:
            if buf:
                runs.append(_Run("".join(buf)))
                buf.clear()

        while i < len(source):
            if closer is not None and source.startswith(closer, i):
                flush()
                return runs, i + len(closer), True
            ch = source[i]
            if ch == "\\" and i + 1 < len(source) and source[i + 1] in _ESCAPABLE:
                buf.append(source[i + 1])
                i += 2
                continue
            if ch == "`":
                span = self._code_span(i)
                if span is None:
                    width = self._run_length(i, "`")
                    buf.append(source[i:i + width])
                    i += width
                    continue
                text, i = span
                if text:
                    flush()
                    runs.append(_Run(text, (Mark(type=MarkType.CODE),)))
                continue
            if depth < MAX_NESTING:
                matched = self._delimited(i, depth)
                if matched is not None:
                    flush()
                    inner, i = matched
                    runs.extend(inner)
                    continue
            buf.append(ch)
            i += 1

        flush()
        return runs, i, closer is None

    def _delimited(self, i: int, depth: int) -> Optional[Tuple[List[_Run], int]]:
        source = self.source
        for delimiter, mark_type in _EMPHASIS:
            if source.startswith(delimiter, i):
                inner, end, closed = self._parse(i + len(delimiter), delimiter, depth + 1)
                if closed and inner:
                    mark = Mark(type=mark_type)
                    return [run.with_outer(mark) for run in inner], end
        if source[i] == "[":
            inner, end, closed = self._parse(i + 1, "]", depth + 1)
            if closed and inner:
                target = self._link_target(end)
                if target is not None:
                    href, end = target
                    mark = Mark(type=MarkType.LINK, attrs={"href": href})
                    return [run.with_outer(mark) for run in inner], end
        return None

    def _run_length(self, i: int, char: str) -> int:
        end = i
        while end < len(self.source) and self.source[end] == char:
            end += 1
        return end - i

    def _code_span(self, i: int) -> Optional[Tuple[str, int]]:
        width = self._run_length(i, "`")
        search = i + width
        while True:
            close = self.source.find("`", search)
            if close == -1:
                return None
            close_width = self._run_length(close, "`")
            if close_width == width:
                text = self.source[i + width:close]
                if len(text) >= 2 and text[0] == " " and text[-1] == " " and text.strip():
                    text = text[1:-1]
                return text, close + close_width
            search = close + close_width

    def _link_target(self, i: int) -> Optional[Tuple[str, int]]:
        source = self.source
        if source.startswith("(<", i):
            j = i + 2
            buf: List[str] = []
            while j < len(source):
                ch = source[j]
                if ch == "\\" and j + 1 < len(source) and source[j + 1] in _ESCAPABLE:
                    buf.append(source[j + 1])
                    j += 2
                    continue
                if ch == ">":
                    break
                if ch == "<":
                    return None
                buf.append(ch)
                j += 1
            if source.startswith(">)", j):
                return "".join(buf), j + 2
            return None
        match = _RAW_TARGET_RE.match(source, i)
        if match:
            return unescape(match.group(1)), match.end()
        return None


def span_marks(span: SpanFormatting) -> List[Mark]:
    marks: List[Mark] = []
    text_style = {
        attr: getattr(span, field)
        for attr, field in _TEXT_STYLE_ATTRS
        if getattr(span, field) is not None and getattr(span, field) != ""
    }
    if text_style:
        marks.append(Mark(type=MarkType.TEXT_STYLE, attrs=text_style))
    if span.background_color is not None:
        color = span.background_color
        marks.append(Mark(type=MarkType.HIGHLIGHT, attrs={"color": color} if color else None))
    if span.underline:
        marks.append(Mark(type=MarkType.UNDERLINE))
    if span.superscript:
        marks.append(Mark(type=MarkType.SUPERSCRIPT))
    if span.subscript:
        marks.append(Mark(type=MarkType.SUBSCRIPT))
    return marks


def _covering_marks(start: int, end: int, spans: Sequence[SpanFormatting]) -> List[Mark]:
    marks: List[Mark] = []
    seen = set()
    for span in spans:
        if not span.covers(start, end):
            continue
        for mark in span_marks(span):
            if mark.type not in seen:
                seen.add(mark.type)
                marks.append(mark)
    return marks


def _same_marks(left: Sequence[Mark], right: Sequence[Mark]) -> bool:
    return [mark.model_dump() for mark in left] == [mark.model_dump() for mark in right]


def _append(nodes: List[TextNode], text: str, marks: List[Mark]) -> None:
    if nodes and _same_marks(nodes[-1].marks, marks):
        nodes[-1] = TextNode(text=nodes[-1].text + text, marks=nodes[-1].marks)
    else:
        nodes.append(TextNode(text=text, marks=marks))


def decode_inline(source: str, spans: Sequence[SpanFormatting] = ()) -> List[TextNode]:
    """Rebuild text nodes from a decorated line, re-attaching span marks by offset.

    A run is split wherever a span starts or ends inside it, so each piece
    picks up the marks of every span that fully covers it.
    """
    nodes: List[TextNode] = []
    position = 0
    for run in _InlineParser(source).parse():
        end = position + len(run.text)
        cuts = {position, end}
        for span in spans:
            for offset in (span.start, span.end):
                if position < offset < end:
                    cuts.add(offset)
        bounds = sorted(cuts)
        for start, stop in zip(bounds, bounds[1:]):
            marks = list(run.marks) + _covering_marks(start, stop, spans)
            _append(nodes, run.text[start - position:stop - position], marks)
        position = end
    return nodes
