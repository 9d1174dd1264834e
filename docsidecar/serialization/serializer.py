"""Editor tree -> Markdown body + sidecar."""
import itertools
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Union

from docsidecar.config import ConverterConfig
from docsidecar.schemas.sidecar import (
    BlockFormatting,
    ImageInfo,
    SidecarDocument,
    coerce_sidecar,
    count_words,
    create_empty_sidecar,
    estimate_reading_time,
    update_sidecar_meta,
)
from docsidecar.schemas.tree import (
    Blockquote,
    BulletList,
    CodeBlock,
    Document,
    Heading,
    HorizontalRule,
    Image,
    ListItem,
    ListNode,
    OrderedList,
    Paragraph,
    Table,
    TableRow,
    plain_text,
    to_tiptap,
)
from .context import ConversionContext, ImageCallback, call_collaborator
from .inline import encode_inline, escape_alt, escape_block_start, escape_text, escape_title, link_target
from .markers import TABLE_PLACEHOLDER, block_id_comment, generate_block_id, image_ref, is_block_id

logger = logging.getLogger(__name__)

_FENCE_PREFIX_RE = re.compile(r" {0,3}(`+)")


@dataclass
class SerializeResult:
    markdown: str
    sidecar: SidecarDocument


class Serializer:
    """Serialize an editor document to Markdown plus a sidecar of the formatting Markdown drops.

    Inline ``data:`` image sources are handed to ``store_image`` (once per
    distinct payload per call) and replaced by ``@img:<token>`` references.
    The instance keeps no per-call state, so concurrent calls are safe.
    """

    def __init__(self, store_image: Optional[ImageCallback] = None, config: Optional[ConverterConfig] = None):
        self.store_image = store_image
        self.config = config or ConverterConfig()

    async def serialize(
        self,
        doc: Union[Document, Dict[str, Any]],
        base: Union[SidecarDocument, Dict[str, Any], None] = None,
    ) -> SerializeResult:
        """Convert ``doc``; ``base`` (the previous sidecar) only contributes creation meta and page settings."""
        document = doc if isinstance(doc, Document) else Document.model_validate(doc)
        ctx = ConversionContext(sidecar=self._fresh_sidecar(base))

        blocks: List[str] = []
        for node in document.content:
            block = await self._block(node, ctx)
            if block is not None:
                blocks.append(block)
        markdown = "\n\n".join(blocks)

        word_count = count_words(plain_text(document, block_separator="\n"))
        sidecar = update_sidecar_meta(
            ctx.sidecar,
            word_count=word_count,
            reading_time=estimate_reading_time(word_count, self.config.words_per_minute),
        )
        logger.debug(
            "Serialized %d blocks (%d words, %d stored images)", len(blocks), word_count, len(ctx.image_refs)
        )
        return SerializeResult(markdown=markdown, sidecar=sidecar)

    @staticmethod
    def _fresh_sidecar(base: Union[SidecarDocument, Dict[str, Any], None]) -> SidecarDocument:
        sidecar = create_empty_sidecar()
        if base is None:
            return sidecar
        previous = coerce_sidecar(base)
        meta = sidecar.meta.model_copy(
            update={
                "created": previous.meta.created,
                "title": previous.meta.title,
                "author": previous.meta.author,
            }
        )
        return sidecar.model_copy(update={"meta": meta, "document": previous.document.model_copy(deep=True)})

    def _block_id(self, node: Any, ctx: ConversionContext) -> str:
        """The node's own id, or a fresh one when it is missing, unwritable or already used in this call."""
        attrs = getattr(node, "attrs", None)
        block_id = getattr(attrs, "block_id", None)
        if not block_id or not is_block_id(block_id) or block_id in ctx.seen_ids:
            if block_id:
                logger.debug("Replacing unusable or duplicate block id %r", block_id)
            block_id = generate_block_id(self.config.block_id_prefix)
            while block_id in ctx.seen_ids:
                block_id = generate_block_id(self.config.block_id_prefix)
        ctx.seen_ids.add(block_id)
        return block_id

    async def _block(self, node: Any, ctx: ConversionContext) -> Optional[str]:
        if isinstance(node, Paragraph):
            return self._paragraph(node, ctx)
        if isinstance(node, Heading):
            return self._heading(node, ctx)
        if isinstance(node, (BulletList, OrderedList)):
            return self._list(node, ctx)
        if isinstance(node, Blockquote):
            return await self._blockquote(node, ctx)
        if isinstance(node, CodeBlock):
            return self._code_block(node, ctx)
        if isinstance(node, HorizontalRule):
            return "---"
        if isinstance(node, Image):
            return await self._image(node, ctx)
        if isinstance(node, Table):
            return self._table(node, ctx)
        return self._unknown(node)

    def _capture_block_formatting(self, attrs: Any, block_id: str, ctx: ConversionContext) -> None:
        formatting = BlockFormatting()
        if attrs.text_align and attrs.text_align != "left":
            formatting.text_align = attrs.text_align
        if attrs.indent:
            formatting.indent = attrs.indent
        if formatting.text_align is not None or formatting.indent is not None:
            ctx.sidecar.blocks[block_id] = formatting

    def _inline(self, content: List[Any], key: str, ctx: ConversionContext) -> str:
        text, spans = encode_inline(content)
        if spans:
            ctx.sidecar.spans[key] = spans
        return text

    def _paragraph(self, node: Paragraph, ctx: ConversionContext) -> str:
        block_id = self._block_id(node, ctx)
        text = self._inline(node.content, block_id, ctx)
        self._capture_block_formatting(node.attrs, block_id, ctx)
        return f"{block_id_comment(block_id)}\n{escape_block_start(text)}"

    def _heading(self, node: Heading, ctx: ConversionContext) -> str:
        block_id = self._block_id(node, ctx)
        level = min(max(node.attrs.level or 1, 1), 6)
        text = self._inline(node.content, block_id, ctx)
        self._capture_block_formatting(node.attrs, block_id, ctx)
        line = f"{'#' * level} {text}" if text else "#" * level
        return f"{block_id_comment(block_id)}\n{line}"

    def _list(self, node: ListNode, ctx: ConversionContext) -> str:
        block_id = self._block_id(node, ctx)
        lines = self._list_lines(node, block_id, itertools.count(), ctx)
        return "\n".join([block_id_comment(block_id)] + lines)

    def _list_lines(self, node: ListNode, list_id: str, counter: Iterator[int], ctx: ConversionContext) -> List[str]:
        """One marker line per item; continuation paragraphs and nested lists are indented.

        List paragraphs are keyed ``<list id>:<n>`` in the sidecar, ``n``
        counting paragraphs depth-first across the whole list.
        """
        pad = " " * self.config.list_indent
        number = node.attrs.start if isinstance(node, OrderedList) else None
        lines: List[str] = []
        for item in node.content:
            if not isinstance(item, ListItem):
                continue
            marker = f"{number}." if number is not None else "-"
            if number is not None:
                number += 1
            children = list(item.content)
            if not children or isinstance(children[0], (BulletList, OrderedList)):
                # Marker lines always carry a paragraph, possibly empty.
                children.insert(0, Paragraph())
            for index, child in enumerate(children):
                if isinstance(child, (BulletList, OrderedList)):
                    lines.extend(pad + line for line in self._list_lines(child, list_id, counter, ctx))
                    continue
                if isinstance(child, Paragraph):
                    content = child.content
                else:
                    content = [child]
                if index > 0 and not plain_text(child):
                    continue
                key = f"{list_id}:{next(counter)}"
                ctx.seen_ids.add(key)
                text = escape_block_start(self._inline(content, key, ctx))
                if index == 0:
                    lines.append(f"{marker} {text}" if text else marker)
                else:
                    lines.append(pad + text)
        return lines

    async def _blockquote(self, node: Blockquote, ctx: ConversionContext) -> str:
        block_id = self._block_id(node, ctx)
        self._capture_block_formatting(node.attrs, block_id, ctx)
        inner: List[str] = []
        for child in node.content:
            block = await self._block(child, ctx)
            if block is not None:
                inner.append(block)
        body = "\n\n".join(inner)
        quoted = [f"> {line}" if line else ">" for line in body.split("\n")]
        return "\n".join([block_id_comment(block_id)] + quoted)

    def _code_block(self, node: CodeBlock, ctx: ConversionContext) -> str:
        block_id = self._block_id(node, ctx)
        code = plain_text(node)
        longest = 0
        for line in code.split("\n"):
            match = _FENCE_PREFIX_RE.match(line)
            if match:
                longest = max(longest, len(match.group(1)))
        fence = "`" * max(3, longest + 1)
        opening = f"{fence}{node.attrs.language or ''}"
        body = [opening, code, fence] if code else [opening, fence]
        return "\n".join([block_id_comment(block_id)] + body)

    async def _image(self, node: Image, ctx: ConversionContext) -> str:
        block_id = self._block_id(node, ctx)
        attrs = node.attrs
        src = attrs.src or ""
        ref = src
        if src.startswith("data:") and self.store_image is not None:
            if src not in ctx.image_refs:
                token = await call_collaborator(self.store_image, src)
                ctx.image_refs[src] = image_ref(token)
            ref = ctx.image_refs[src]

        alt = attrs.alt or ""
        ctx.sidecar.images[block_id] = ImageInfo(
            ref=ref,
            alt=alt,
            title=attrs.title,
            width=attrs.width,
            height=attrs.height,
            alignment=attrs.alignment,
        )
        title = f' "{escape_title(attrs.title)}"' if attrs.title else ""
        return f"{block_id_comment(block_id)}\n![{escape_alt(alt)}]({link_target(ref)}{title})"

    def _table(self, node: Table, ctx: ConversionContext) -> str:
        """Readable pipe table in the body; the full node is kept in ``sidecar.tables``."""
        block_id = self._block_id(node, ctx)
        if self.config.preserve_tables:
            stored = to_tiptap(node)
            stored.setdefault("attrs", {})["blockId"] = block_id
            ctx.sidecar.tables[block_id] = stored

        rows = [row for row in node.content if isinstance(row, TableRow)]
        width = max((len(row.content) for row in rows), default=0)
        if not rows or width == 0:
            return f"{block_id_comment(block_id)}\n{TABLE_PLACEHOLDER}"

        lines = [block_id_comment(block_id)]
        for index, row in enumerate(rows):
            cells = [_cell_text(cell) for cell in row.content]
            cells += [""] * (width - len(cells))
            lines.append("| " + " | ".join(cells) + " |")
            if index == 0:
                lines.append("| " + " | ".join(["---"] * width) + " |")
        return "\n".join(lines)

    def _unknown(self, node: Any) -> Optional[str]:
        text = plain_text(node)
        if not text.strip():
            return None
        logger.debug("Flattening unsupported node %r to plain text", getattr(node, "type", None))
        return escape_block_start(escape_text(text))


def _cell_text(cell: Any) -> str:
    text = plain_text(cell, block_separator=" ").replace("\n", " ")
    return text.replace("|", "\\|")


async def serialize_document(
    doc: Union[Document, Dict[str, Any]],
    store_image: Optional[ImageCallback] = None,
    base: Union[SidecarDocument, Dict[str, Any], None] = None,
    config: Optional[ConverterConfig] = None,
) -> SerializeResult:
    return await Serializer(store_image=store_image, config=config).serialize(doc, base=base)
