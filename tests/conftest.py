import copy

import pytest


def _normalise(node):
    node = copy.deepcopy(node)
    attrs = node.get("attrs")
    if isinstance(attrs, dict):
        attrs.pop("blockId", None)
    if "marks" in node:
        node["marks"] = sorted(node["marks"], key=lambda mark: mark["type"])
    if "content" in node:
        node["content"] = [_normalise(child) for child in node["content"]]
    return node


@pytest.fixture
def normalise():
    """Drop block ids and order marks by type so trees compare structurally."""
    return _normalise


@pytest.fixture
def image_store():
    """In-memory store/load pair that records every call."""

    class MemoryImages:
        def __init__(self):
            self.payloads = {}
            self.store_calls = []
            self.load_calls = []

        async def store(self, payload):
            self.store_calls.append(payload)
            token = f"img{len(self.payloads)}"
            for existing, stored in self.payloads.items():
                if stored == payload:
                    return existing
            self.payloads[token] = payload
            return token

        async def load(self, token):
            self.load_calls.append(token)
            return self.payloads[token]

    return MemoryImages()
