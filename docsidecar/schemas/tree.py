"""Rich-document tree (Tiptap JSON) as a closed tagged union of node kinds."""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Discriminator, Field, Tag

from .base import CamelModel


class MarkType:
    BOLD = "bold"
    ITALIC = "italic"
    STRIKE = "strike"
    CODE = "code"
    LINK = "link"
    UNDERLINE = "underline"
    SUPERSCRIPT = "superscript"
    SUBSCRIPT = "subscript"
    TEXT_STYLE = "textStyle"
    HIGHLIGHT = "highlight"


class Mark(CamelModel):
    type: str
    attrs: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------

class BlockAttrs(CamelModel):
    block_id: Optional[str] = None
    text_align: Optional[str] = None  # left | center | right | justify
    indent: Optional[int] = None


class HeadingAttrs(BlockAttrs):
    level: int = 1


class ListAttrs(CamelModel):
    block_id: Optional[str] = None


class OrderedListAttrs(ListAttrs):
    start: int = 1


class CodeBlockAttrs(CamelModel):
    language: Optional[str] = None
    block_id: Optional[str] = None


class ImageAttrs(CamelModel):
    src: str = ""
    alt: Optional[str] = None
    title: Optional[str] = None
    width: Optional[Union[int, float, str]] = None
    height: Optional[Union[int, float, str]] = None
    alignment: Optional[str] = None  # left | center | right
    block_id: Optional[str] = None


class CellAttrs(CamelModel):
    colspan: int = 1
    rowspan: int = 1
    colwidth: Optional[List[int]] = None


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

class TextNode(CamelModel):
    type: Literal["text"] = "text"
    text: str = ""
    marks: List[Mark] = Field(default_factory=list)


class Paragraph(CamelModel):
    type: Literal["paragraph"] = "paragraph"
    attrs: BlockAttrs = Field(default_factory=BlockAttrs)
    content: List["Node"] = Field(default_factory=list)


class Heading(CamelModel):
    type: Literal["heading"] = "heading"
    attrs: HeadingAttrs = Field(default_factory=HeadingAttrs)
    content: List["Node"] = Field(default_factory=list)


class BulletList(CamelModel):
    type: Literal["bulletList"] = "bulletList"
    attrs: ListAttrs = Field(default_factory=ListAttrs)
    content: List["Node"] = Field(default_factory=list)


class OrderedList(CamelModel):
    type: Literal["orderedList"] = "orderedList"
    attrs: OrderedListAttrs = Field(default_factory=OrderedListAttrs)
    content: List["Node"] = Field(default_factory=list)


class ListItem(CamelModel):
    type: Literal["listItem"] = "listItem"
    content: List["Node"] = Field(default_factory=list)


class Blockquote(CamelModel):
    type: Literal["blockquote"] = "blockquote"
    attrs: BlockAttrs = Field(default_factory=BlockAttrs)
    content: List["Node"] = Field(default_factory=list)


class CodeBlock(CamelModel):
    type: Literal["codeBlock"] = "codeBlock"
    attrs: CodeBlockAttrs = Field(default_factory=CodeBlockAttrs)
    content: List["Node"] = Field(default_factory=list)


class HorizontalRule(CamelModel):
    type: Literal["horizontalRule"] = "horizontalRule"


class Image(CamelModel):
    type: Literal["image"] = "image"
    attrs: ImageAttrs = Field(default_factory=ImageAttrs)


class TableCell(CamelModel):
    type: Literal["tableCell"] = "tableCell"
    attrs: CellAttrs = Field(default_factory=CellAttrs)
    content: List["Node"] = Field(default_factory=list)


class TableHeader(CamelModel):
    type: Literal["tableHeader"] = "tableHeader"
    attrs: CellAttrs = Field(default_factory=CellAttrs)
    content: List["Node"] = Field(default_factory=list)


class TableRow(CamelModel):
    type: Literal["tableRow"] = "tableRow"
    content: List["Node"] = Field(default_factory=list)


class TableAttrs(CamelModel):
    block_id: Optional[str] = None


class Table(CamelModel):
    type: Literal["table"] = "table"
    attrs: TableAttrs = Field(default_factory=TableAttrs)
    content: List["Node"] = Field(default_factory=list)


class UnknownNode(CamelModel):
    """Any node kind outside the known set; kept as-is so nothing is rejected."""

    type: str
    attrs: Optional[Dict[str, Any]] = None
    content: List["Node"] = Field(default_factory=list)
    marks: List[Mark] = Field(default_factory=list)
    text: Optional[str] = None


_KNOWN_NODES = {
    "text": TextNode,
    "paragraph": Paragraph,
    "heading": Heading,
    "bulletList": BulletList,
    "orderedList": OrderedList,
    "listItem": ListItem,
    "blockquote": Blockquote,
    "codeBlock": CodeBlock,
    "horizontalRule": HorizontalRule,
    "image": Image,
    "table": Table,
    "tableRow": TableRow,
    "tableCell": TableCell,
    "tableHeader": TableHeader,
}


def _node_tag(value: Any) -> str:
    if isinstance(value, UnknownNode):
        return "unknown"
    if isinstance(value, dict):
        kind = value.get("type")
    else:
        kind = getattr(value, "type", None)
    return kind if kind in _KNOWN_NODES else "unknown"


Node = Annotated[
    Union[
        Annotated[TextNode, Tag("text")],
        Annotated[Paragraph, Tag("paragraph")],
        Annotated[Heading, Tag("heading")],
        Annotated[BulletList, Tag("bulletList")],
        Annotated[OrderedList, Tag("orderedList")],
        Annotated[ListItem, Tag("listItem")],
        Annotated[Blockquote, Tag("blockquote")],
        Annotated[CodeBlock, Tag("codeBlock")],
        Annotated[HorizontalRule, Tag("horizontalRule")],
        Annotated[Image, Tag("image")],
        Annotated[Table, Tag("table")],
        Annotated[TableRow, Tag("tableRow")],
        Annotated[TableCell, Tag("tableCell")],
        Annotated[TableHeader, Tag("tableHeader")],
        Annotated[UnknownNode, Tag("unknown")],
    ],
    Discriminator(_node_tag),
]


class Document(CamelModel):
    type: Literal["doc"] = "doc"
    content: List[Node] = Field(default_factory=list)


for _model in (
    Paragraph,
    Heading,
    BulletList,
    OrderedList,
    ListItem,
    Blockquote,
    CodeBlock,
    TableCell,
    TableHeader,
    TableRow,
    Table,
    UnknownNode,
    Document,
):
    _model.model_rebuild()

ListNode = Union[BulletList, OrderedList]

# Containers whose children are blocks rather than inline runs.
_BLOCK_CONTAINERS = (Document, BulletList, OrderedList, ListItem, Blockquote, Table, TableRow, TableCell, TableHeader)


def plain_text(node: Any, block_separator: str = "") -> str:
    """Concatenate the text of every descendant text node, without formatting.

    ``block_separator`` is placed between the children of block containers
    (lists, quotes, tables, the document itself); inline content is always
    joined directly.
    """
    if isinstance(node, TextNode):
        return node.text
    text = getattr(node, "text", None)
    if text:
        return text
    children = getattr(node, "content", None) or []
    separator = block_separator if isinstance(node, _BLOCK_CONTAINERS) else ""
    return separator.join(plain_text(child, block_separator) for child in children)


def to_tiptap(node: CamelModel) -> Dict[str, Any]:
    """Dump a node (or a whole document) in editor JSON form."""
    return node.to_wire()
