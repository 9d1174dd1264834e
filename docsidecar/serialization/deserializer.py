"""Markdown body + sidecar -> editor tree."""
import itertools
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from docsidecar.config import ConverterConfig
from docsidecar.schemas.sidecar import SidecarDocument, SpanFormatting, coerce_sidecar
from docsidecar.schemas.tree import (
    BlockAttrs,
    Blockquote,
    BulletList,
    CodeBlock,
    CodeBlockAttrs,
    Document,
    Heading,
    HeadingAttrs,
    HorizontalRule,
    Image,
    ImageAttrs,
    ListAttrs,
    ListItem,
    OrderedList,
    OrderedListAttrs,
    Paragraph,
    Table,
    TableAttrs,
    TableCell,
    TableHeader,
    TableRow,
    TextNode,
)
from .context import ConversionContext, ImageCallback, call_collaborator
from .inline import decode_inline, unescape
from .markers import TABLE_PLACEHOLDER, parse_block_id, parse_image_ref

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r"^(#{1,6})(?: (.*))?$")
BULLET_RE = re.compile(r"^[-*+](?: (.*))?$")
ORDERED_RE = re.compile(r"^(\d+)[.)](?: (.*))?$")
FENCE_RE = re.compile(r"^(`{3,})([^`]*)$")
CLOSING_FENCE_RE = re.compile(r"^ {0,3}(`{3,})\s*$")
RULES = ("---", "***", "___")
IMAGE_RE = re.compile(
    r"^!\[((?:\\.|[^\\\]])*)\]"
    r"\((<(?:\\.|[^\\<>])*>|[^\s()<>]*)"
    r'(?:\s+"((?:\\.|[^\\"])*)")?\)\s*$'
)
_CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")
_DELIMITER_CELL_RE = re.compile(r"^:?-{3,}:?$")

BlockResult = Tuple[Optional[Any], int]


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _is_list_line(line: str) -> bool:
    return bool(BULLET_RE.match(line) or ORDERED_RE.match(line))


class Deserializer:
    """Rebuild an editor document from a Markdown body and its sidecar.

    Never raises on malformed Markdown: anything unrecognised becomes a
    paragraph. ``@img:<token>`` references are resolved through
    ``load_image``; its failures propagate to the caller.
    """

    def __init__(self, load_image: Optional[ImageCallback] = None, config: Optional[ConverterConfig] = None):
        self.load_image = load_image
        self.config = config or ConverterConfig()

    async def deserialize(
        self,
        markdown: str,
        sidecar: Union[SidecarDocument, Dict[str, Any], str, None] = None,
    ) -> Document:
        ctx = ConversionContext(sidecar=coerce_sidecar(sidecar))
        lines = markdown.replace("\r\n", "\n").split("\n")
        content = await self._blocks(lines, ctx)

        stale = ctx.sidecar.referenced_ids() - ctx.seen_ids
        if stale:
            logger.debug("Sidecar entries without a matching block: %s", sorted(stale))
        return Document(content=content)

    async def _blocks(self, lines: List[str], ctx: ConversionContext) -> List[Any]:
        nodes: List[Any] = []
        index = 0
        while index < len(lines):
            node, index = await self._block(lines, index, ctx)
            if node is not None:
                nodes.append(node)
        return nodes

    async def _block(self, lines: List[str], index: int, ctx: ConversionContext) -> BlockResult:
        line = lines[index]
        if not line.strip():
            return None, index + 1

        block_id = parse_block_id(line)
        if block_id is not None:
            ctx.seen_ids.add(block_id)
            index += 1
            if index >= len(lines) or not lines[index].strip():
                return self._paragraph("", block_id, ctx), index + 1
            if parse_block_id(lines[index]) is not None:
                # Two markers in a row: the first one labels an empty paragraph.
                return self._paragraph("", block_id, ctx), index
            line = lines[index]

        heading = HEADING_RE.match(line)
        if heading:
            return self._heading(len(heading.group(1)), heading.group(2) or "", block_id, ctx), index + 1
        if _is_list_line(line):
            return self._list(lines, index, block_id, ctx)
        if line.startswith(">"):
            return await self._blockquote(lines, index, block_id, ctx)
        if FENCE_RE.match(line):
            return self._code_block(lines, index, block_id)
        if line.rstrip() in RULES:
            return HorizontalRule(), index + 1
        if line.startswith("!["):
            image = await self._image(line, block_id, ctx)
            if image is not None:
                return image, index + 1
        if line.startswith("|") or line.strip() == TABLE_PLACEHOLDER:
            return self._table(lines, index, block_id, ctx)
        return self._paragraph(line, block_id, ctx), index + 1

    # -- formatting lookups --------------------------------------------------

    def _spans(self, key: Optional[str], ctx: ConversionContext) -> List[SpanFormatting]:
        if not key:
            return []
        ctx.seen_ids.add(key)
        return ctx.sidecar.spans.get(key, [])

    def _apply_block_formatting(self, attrs: BlockAttrs, block_id: Optional[str], ctx: ConversionContext) -> None:
        formatting = ctx.sidecar.blocks.get(block_id) if block_id else None
        if formatting is None:
            return
        if formatting.text_align:
            attrs.text_align = formatting.text_align
        if formatting.indent:
            attrs.indent = formatting.indent

    # -- blocks ----------------------------------------------------------------

    def _paragraph(self, text: str, block_id: Optional[str], ctx: ConversionContext) -> Paragraph:
        attrs = BlockAttrs(block_id=block_id)
        self._apply_block_formatting(attrs, block_id, ctx)
        return Paragraph(attrs=attrs, content=decode_inline(text, self._spans(block_id, ctx)))

    def _heading(self, level: int, text: str, block_id: Optional[str], ctx: ConversionContext) -> Heading:
        attrs = HeadingAttrs(level=level, block_id=block_id)
        self._apply_block_formatting(attrs, block_id, ctx)
        return Heading(attrs=attrs, content=decode_inline(text, self._spans(block_id, ctx)))

    def _list(self, lines: List[str], index: int, block_id: Optional[str], ctx: ConversionContext) -> BlockResult:
        node, end = self._list_at(lines, index, block_id, itertools.count(), ctx)
        node.attrs.block_id = block_id
        return node, end

    def _list_at(
        self,
        lines: List[str],
        index: int,
        list_id: Optional[str],
        counter: Iterator[int],
        ctx: ConversionContext,
    ) -> Tuple[Any, int]:
        """Consume one list: marker lines at its own indent plus deeper lines belonging to each item."""
        base = _indent(lines[index])
        ordered = ORDERED_RE.match(lines[index][base:]) is not None
        pattern = ORDERED_RE if ordered else BULLET_RE
        items: List[ListItem] = []
        start = 1
        i = index
        while i < len(lines):
            line = lines[i]
            if not line.strip() or _indent(line) != base:
                break
            match = pattern.match(line[base:])
            if not match:
                break
            if ordered:
                if not items:
                    start = int(match.group(1))
                text = match.group(2) or ""
            else:
                text = match.group(1) or ""
            i += 1
            nested: List[str] = []
            while i < len(lines) and lines[i].strip() and _indent(lines[i]) > base:
                nested.append(lines[i])
                i += 1
            items.append(self._list_item(text, nested, list_id, counter, ctx))

        if ordered:
            return OrderedList(attrs=OrderedListAttrs(start=start), content=items), i
        return BulletList(attrs=ListAttrs(), content=items), i

    def _list_item(
        self,
        text: str,
        nested: List[str],
        list_id: Optional[str],
        counter: Iterator[int],
        ctx: ConversionContext,
    ) -> ListItem:
        children: List[Any] = [self._list_paragraph(text, list_id, counter, ctx)]
        if nested:
            depth = min(_indent(line) for line in nested)
            if not any(_indent(line) == depth and _is_list_line(line[depth:]) for line in nested):
                # Continuation lines only: spaces past the list indent belong to the text.
                depth = min(depth, self.config.list_indent)
            nested = [line[depth:] for line in nested]
        j = 0
        while j < len(nested):
            line = nested[j]
            if _is_list_line(line):
                sublist, j = self._list_at(nested, j, list_id, counter, ctx)
                children.append(sublist)
            else:
                children.append(self._list_paragraph(line, list_id, counter, ctx))
                j += 1
        return ListItem(content=children)

    def _list_paragraph(
        self, text: str, list_id: Optional[str], counter: Iterator[int], ctx: ConversionContext
    ) -> Paragraph:
        position = next(counter)
        key = f"{list_id}:{position}" if list_id else None
        return Paragraph(content=decode_inline(text, self._spans(key, ctx)))

    async def _blockquote(
        self, lines: List[str], index: int, block_id: Optional[str], ctx: ConversionContext
    ) -> BlockResult:
        inner: List[str] = []
        i = index
        while i < len(lines) and lines[i].startswith(">"):
            line = lines[i]
            inner.append(line[2:] if line.startswith("> ") else line[1:])
            i += 1
        attrs = BlockAttrs(block_id=block_id)
        self._apply_block_formatting(attrs, block_id, ctx)
        return Blockquote(attrs=attrs, content=await self._blocks(inner, ctx)), i

    def _code_block(self, lines: List[str], index: int, block_id: Optional[str]) -> BlockResult:
        opening = FENCE_RE.match(lines[index])
        width = len(opening.group(1))
        language = opening.group(2).strip() or None
        code: List[str] = []
        i = index + 1
        while i < len(lines):
            closing = CLOSING_FENCE_RE.match(lines[i])
            if closing and len(closing.group(1)) >= width:
                i += 1
                break
            code.append(lines[i])
            i += 1
        else:
            logger.debug("Unterminated code fence at line %d; consumed to end of input", index + 1)
        text = "\n".join(code)
        content = [TextNode(text=text)] if text else []
        return CodeBlock(attrs=CodeBlockAttrs(language=language, block_id=block_id), content=content), i

    async def _image(self, line: str, block_id: Optional[str], ctx: ConversionContext) -> Optional[Image]:
        match = IMAGE_RE.match(line)
        if not match:
            return None
        alt, target, title = match.groups()
        src = unescape(target[1:-1] if target.startswith("<") else target)

        token = parse_image_ref(src)
        if token is not None and self.load_image is not None:
            if token not in ctx.image_refs:
                ctx.image_refs[token] = await call_collaborator(self.load_image, token)
            src = ctx.image_refs[token]

        attrs = ImageAttrs(
            src=src,
            alt=unescape(alt) or None,
            title=unescape(title) if title else None,
            block_id=block_id,
        )
        info = ctx.sidecar.images.get(block_id) if block_id else None
        if info is not None:
            attrs.width = info.width
            attrs.height = info.height
            attrs.alignment = info.alignment
        return Image(attrs=attrs)

    def _table(self, lines: List[str], index: int, block_id: Optional[str], ctx: ConversionContext) -> BlockResult:
        rows: List[str] = []
        i = index
        if lines[i].strip() == TABLE_PLACEHOLDER:
            i += 1
        else:
            while i < len(lines) and lines[i].startswith("|"):
                rows.append(lines[i])
                i += 1

        stored = ctx.sidecar.tables.get(block_id) if block_id else None
        if stored is not None:
            try:
                table = Table.model_validate(stored)
            except ValidationError:
                logger.warning("Stored table for block %s is invalid; rebuilding from the body", block_id)
            else:
                table.attrs.block_id = block_id
                return table, i

        if not rows:
            return None, i
        return self._table_from_rows(rows, block_id), i

    @staticmethod
    def _table_from_rows(rows: List[str], block_id: Optional[str]) -> Table:
        parsed = [_split_row(row) for row in rows]
        delimiter: Optional[int] = None
        for position, cells in enumerate(parsed):
            if cells and all(_DELIMITER_CELL_RE.match(cell) for cell in cells):
                delimiter = position
                break

        table_rows: List[TableRow] = []
        for position, cells in enumerate(parsed):
            if position == delimiter:
                continue
            cell_type = TableHeader if delimiter is not None and position < delimiter else TableCell
            table_rows.append(
                TableRow(
                    content=[
                        cell_type(content=[Paragraph(content=[TextNode(text=cell)] if cell else [])])
                        for cell in cells
                    ]
                )
            )
        return Table(attrs=TableAttrs(block_id=block_id), content=table_rows)


def _split_row(row: str) -> List[str]:
    body = row.strip()
    if body.startswith("|"):
        body = body[1:]
    if body.endswith("|") and not body.endswith("\\|"):
        body = body[:-1]
    return [cell.strip().replace("\\|", "|") for cell in _CELL_SPLIT_RE.split(body)]


async def deserialize_document(
    markdown: str,
    sidecar: Union[SidecarDocument, Dict[str, Any], str, None] = None,
    load_image: Optional[ImageCallback] = None,
    config: Optional[ConverterConfig] = None,
) -> Document:
    return await Deserializer(load_image=load_image, config=config).deserialize(markdown, sidecar)
