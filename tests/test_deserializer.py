import logging

import pytest

from docsidecar.config import ConverterConfig
from docsidecar.schemas.tree import (
    Blockquote,
    BulletList,
    CodeBlock,
    Heading,
    Image,
    Mark,
    OrderedList,
    Paragraph,
    Table,
    TableCell,
    TableHeader,
    TextNode,
    plain_text,
)
from docsidecar.serialization import Deserializer, deserialize_document

SIDECAR_META = {"created": "2024-01-01T00:00:00+00:00", "modified": "2024-01-01T00:00:00+00:00"}


def _sidecar(**sections):
    return {"version": 1, "meta": SIDECAR_META, **sections}


@pytest.mark.asyncio
async def test_plain_bullet_list():
    doc = await deserialize_document("- Eggs\n- Bread")

    assert len(doc.content) == 1
    bullets = doc.content[0]
    assert isinstance(bullets, BulletList)
    assert len(bullets.content) == 2
    for item, expected in zip(bullets.content, ["Eggs", "Bread"]):
        assert len(item.content) == 1
        paragraph = item.content[0]
        assert isinstance(paragraph, Paragraph)
        assert paragraph.content == [TextNode(text=expected)]


@pytest.mark.asyncio
async def test_heading_and_highlight_from_sidecar():
    markdown = "<!-- @mid:abc123 -->\n## Plan\n\n<!-- @mid:def456 -->\nBuy milk"
    sidecar = _sidecar(spans={"def456": [{"start": 0, "end": 8, "backgroundColor": "yellow"}]})
    doc = await deserialize_document(markdown, sidecar)

    heading, paragraph = doc.content
    assert isinstance(heading, Heading)
    assert heading.attrs.level == 2
    assert heading.attrs.block_id == "abc123"
    assert heading.content == [TextNode(text="Plan")]
    assert paragraph.attrs.block_id == "def456"
    assert paragraph.content == [
        TextNode(text="Buy milk", marks=[Mark(type="highlight", attrs={"color": "yellow"})])
    ]


@pytest.mark.asyncio
async def test_block_formatting_is_reapplied():
    markdown = "<!-- @mid:p -->\ncentered\n\n<!-- @mid:q -->\n> <!-- @mid:q1 -->\n> inside"
    sidecar = _sidecar(blocks={"p": {"textAlign": "center", "indent": 1}, "q": {"indent": 2}})
    doc = await deserialize_document(markdown, sidecar)

    paragraph, quote = doc.content
    assert paragraph.attrs.text_align == "center"
    assert paragraph.attrs.indent == 1
    assert isinstance(quote, Blockquote)
    assert quote.attrs.indent == 2
    assert quote.content[0].attrs.block_id == "q1"
    assert plain_text(quote.content[0]) == "inside"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "markdown",
    [
        "",
        "\n\n\n",
        "```\nnever closed",
        "![broken](",
        "<!-- @mid:x -->",
        "<!-- @mid:a -->\n<!-- @mid:b -->",
        "> ",
        ">",
        "|",
        "| a |\n| --- |",
        "***",
        "* * *",
        "1.",
        "-",
        "**unclosed",
        "[link](",
        "\\",
        "#######  seven",
        "<!-- @mid:t -->\n<!-- table -->",
        "    indented code\n\t\ttabs",
    ],
)
async def test_malformed_input_never_raises(markdown):
    doc = await deserialize_document(markdown, {"garbage": True, "spans": "nope"})
    assert doc.type == "doc"


@pytest.mark.asyncio
async def test_truncated_fence_consumes_to_end():
    doc = await deserialize_document("```js\nconst a = 1;\n\nmore")
    assert len(doc.content) == 1
    code = doc.content[0]
    assert isinstance(code, CodeBlock)
    assert code.attrs.language == "js"
    assert plain_text(code) == "const a = 1;\n\nmore"


@pytest.mark.asyncio
async def test_id_comment_alone_is_an_empty_paragraph():
    doc = await deserialize_document("<!-- @mid:a -->\n<!-- @mid:b -->\nText\n\n<!-- @mid:c -->")
    assert [node.attrs.block_id for node in doc.content] == ["a", "b", "c"]
    assert [plain_text(node) for node in doc.content] == ["", "Text", ""]


@pytest.mark.asyncio
async def test_unmatched_image_syntax_is_paragraph_text():
    doc = await deserialize_document("![alt](no close")
    assert isinstance(doc.content[0], Paragraph)
    assert plain_text(doc.content[0]) == "![alt](no close"


@pytest.mark.asyncio
async def test_image_tokens_resolve_through_loader():
    calls = []

    async def load(token):
        calls.append(token)
        return "data:image/png;base64,AAAA"

    markdown = '<!-- @mid:i1 -->\n![Cat](@img:abc "A cat")\n\n<!-- @mid:i2 -->\n![Cat again](@img:abc)'
    sidecar = _sidecar(images={"i1": {"ref": "@img:abc", "alt": "Cat", "width": 320, "alignment": "center"}})
    doc = await Deserializer(load_image=load).deserialize(markdown, sidecar)

    first, second = doc.content
    assert isinstance(first, Image)
    assert first.attrs.src == "data:image/png;base64,AAAA"
    assert first.attrs.alt == "Cat"
    assert first.attrs.title == "A cat"
    assert first.attrs.width == 320
    assert first.attrs.alignment == "center"
    assert second.attrs.alt == "Cat again"
    assert second.attrs.width is None
    assert calls == ["abc"]


@pytest.mark.asyncio
async def test_image_tokens_kept_without_loader():
    doc = await deserialize_document("<!-- @mid:i -->\n![x](@img:abc)")
    assert doc.content[0].attrs.src == "@img:abc"


@pytest.mark.asyncio
async def test_loader_errors_propagate():
    def load(token):
        raise KeyError(token)

    with pytest.raises(KeyError):
        await deserialize_document("![x](@img:missing)", load_image=load)


@pytest.mark.asyncio
async def test_stale_sidecar_entries_are_ignored(caplog):
    sidecar = _sidecar(
        blocks={"ghost": {"textAlign": "right"}},
        spans={"ghost": [{"start": 0, "end": 2, "color": "red"}]},
        images={"ghost": {"ref": "@img:zzz"}},
    )
    with caplog.at_level(logging.DEBUG, logger="docsidecar"):
        doc = await deserialize_document("<!-- @mid:p -->\nhello", sidecar)

    assert doc.content[0].content == [TextNode(text="hello")]
    assert doc.content[0].attrs.text_align is None
    assert "ghost" in caplog.text


@pytest.mark.asyncio
async def test_invalid_sidecar_is_treated_as_empty(caplog):
    with caplog.at_level(logging.WARNING):
        doc = await deserialize_document("<!-- @mid:p -->\nhello", {"version": 1, "meta": "broken"})
    assert doc.content[0].content == [TextNode(text="hello")]
    assert "unreadable sidecar" in caplog.text


@pytest.mark.asyncio
async def test_windows_line_endings():
    doc = await deserialize_document("<!-- @mid:h -->\r\n# Title\r\n\r\n- one\r\n- two")
    assert isinstance(doc.content[0], Heading)
    assert doc.content[0].attrs.block_id == "h"
    assert isinstance(doc.content[1], BulletList)
    assert len(doc.content[1].content) == 2


@pytest.mark.asyncio
async def test_nested_and_ordered_lists():
    markdown = "<!-- @mid:l -->\n3. first\n   - inner\n   continued\n4. second"
    sidecar = _sidecar(spans={"l:2": [{"start": 0, "end": 9, "underline": True}]})
    doc = await deserialize_document(markdown, sidecar)

    ordered = doc.content[0]
    assert isinstance(ordered, OrderedList)
    assert ordered.attrs.start == 3
    assert ordered.attrs.block_id == "l"
    first, second = ordered.content
    assert isinstance(first.content[1], BulletList)
    assert plain_text(first.content[1]) == "inner"
    assert first.content[2].content == [TextNode(text="continued", marks=[Mark(type="underline")])]
    assert plain_text(second) == "second"


@pytest.mark.asyncio
async def test_continuation_keeps_its_own_leading_spaces():
    doc = await deserialize_document("- first\n    indented cont\n- second")

    first = doc.content[0].content[0]
    assert first.content[1].content == [TextNode(text="  indented cont")]


@pytest.mark.asyncio
async def test_continuation_indent_follows_config():
    doc = await Deserializer(config=ConverterConfig(list_indent=4)).deserialize("- first\n      cont")
    assert doc.content[0].content[0].content[1].content == [TextNode(text="  cont")]


@pytest.mark.asyncio
async def test_pipe_table_without_sidecar():
    markdown = "| Item | Qty |\n| --- | --- |\n| a \\| b | 12 |"
    doc = await deserialize_document(markdown)

    table = doc.content[0]
    assert isinstance(table, Table)
    header, row = table.content
    assert all(isinstance(cell, TableHeader) for cell in header.content)
    assert all(isinstance(cell, TableCell) for cell in row.content)
    assert [plain_text(cell) for cell in row.content] == ["a | b", "12"]


@pytest.mark.asyncio
async def test_table_restored_from_sidecar():
    stored = {
        "type": "table",
        "attrs": {"blockId": "t"},
        "content": [
            {
                "type": "tableRow",
                "content": [
                    {"type": "tableCell", "attrs": {"colspan": 2}, "content": [{"type": "paragraph", "content": [{"type": "text", "text": "wide"}]}]}
                ],
            }
        ],
    }
    doc = await deserialize_document("<!-- @mid:t -->\n| wide |\n| --- |", _sidecar(tables={"t": stored}))

    table = doc.content[0]
    assert table.attrs.block_id == "t"
    assert table.content[0].content[0].attrs.colspan == 2


@pytest.mark.asyncio
async def test_broken_stored_table_falls_back_to_pipe_rows(caplog):
    stored = {"type": "table", "content": [{"type": "tableRow", "content": [{"type": "tableCell", "attrs": {"colspan": "x"}}]}]}
    with caplog.at_level(logging.WARNING):
        doc = await deserialize_document("<!-- @mid:t -->\n| a | b |", _sidecar(tables={"t": stored}))

    table = doc.content[0]
    assert [plain_text(cell) for cell in table.content[0].content] == ["a", "b"]
    assert "Stored table" in caplog.text


@pytest.mark.asyncio
async def test_rules_and_escaped_lines():
    doc = await deserialize_document("---\n\n\\# literal\n\n1\\. also literal")
    assert doc.content[0].type == "horizontalRule"
    assert plain_text(doc.content[1]) == "# literal"
    assert plain_text(doc.content[2]) == "1. also literal"
