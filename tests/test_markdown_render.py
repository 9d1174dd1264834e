"""The body must stay ordinary Markdown: a stock renderer shows it correctly."""
import markdown
import pytest
from bs4 import BeautifulSoup, Comment

from docsidecar.serialization import serialize_document


async def _render(tree):
    result = await serialize_document(tree)
    return BeautifulSoup(markdown.markdown(result.markdown), "html.parser")


@pytest.mark.asyncio
async def test_heading_renders_and_ids_stay_hidden():
    soup = await _render(
        {
            "type": "doc",
            "content": [
                {"type": "heading", "attrs": {"level": 2, "blockId": "abc123"}, "content": [{"type": "text", "text": "Plan"}]},
                {"type": "paragraph", "attrs": {"blockId": "def456"}, "content": [{"type": "text", "text": "Buy milk"}]},
            ],
        }
    )
    assert soup.find("h2").get_text() == "Plan"
    assert soup.find("p").get_text() == "Buy milk"
    assert "@mid" not in soup.get_text()
    comments = soup.find_all(string=lambda s: isinstance(s, Comment))
    assert [c.strip() for c in comments] == ["@mid:abc123", "@mid:def456"]


@pytest.mark.asyncio
async def test_lists_and_emphasis_render():
    soup = await _render(
        {
            "type": "doc",
            "content": [
                {
                    "type": "bulletList",
                    "content": [
                        {"type": "listItem", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "Eggs"}]}]},
                        {
                            "type": "listItem",
                            "content": [
                                {"type": "paragraph", "content": [{"type": "text", "text": "Bread", "marks": [{"type": "bold"}]}]}
                            ],
                        },
                    ],
                }
            ],
        }
    )
    items = soup.find("ul").find_all("li")
    assert [item.get_text() for item in items] == ["Eggs", "Bread"]
    assert items[1].find("strong").get_text() == "Bread"
