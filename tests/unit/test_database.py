"""Unit tests for the EntityDatabase facade over the in-memory provider."""

from __future__ import annotations

import pytest

from entigraph.config import CascadeConfig
from entigraph.hydration import Hydrated
from entigraph.models.records import Draft
from entigraph.models.records import Resolved
from entigraph.schema.fields import SchemaValidationError
from entigraph.schema.graph import UnknownEntityTypeError
from entigraph.schema.graph import build_schema_graph
from entigraph.database import EntityDatabase
from entigraph.storage.memory import MemoryProvider


BLOG_SCHEMA = {
    "Post": {"title": "string", "author": "->Author", "tags": ["~>Tag"]},
    "Author": {"name": "string"},
    "Tag": {"name": "string"},
}

ORDER_SCHEMA = {
    "Order": {"title": "string", "items": ["->Item"], "customer": "->Customer"},
    "Item": {"name": "string"},
    "Customer": {"name": "string"},
}

ORG_SCHEMA = {
    "Company": {"name": "string", "department": "->Department?"},
    "Department": {"name": "string", "company": "<-Company", "team": "->Team?"},
    "Team": {"name": "string", "members": "->Person[]?"},
    "Person": {"name": "string"},
}


class RefusingProvider(MemoryProvider):
    """MemoryProvider that refuses to create the given entity types."""

    def __init__(self, *refused: str) -> None:
        super().__init__()
        self.refused = set(refused)

    async def create(self, type_name, entity_id, data):
        if type_name in self.refused:
            raise RuntimeError(f"cannot create {type_name}")
        return await super().create(type_name, entity_id, data)


class ListOnlyProvider:
    """Provider without ``semantic_search``; only what the facade reads."""

    def __init__(self, inner: MemoryProvider) -> None:
        self.inner = inner

    async def get(self, type_name, entity_id):
        return await self.inner.get(type_name, entity_id)

    async def list(self, type_name, **kwargs):
        return await self.inner.list(type_name, **kwargs)

    async def search(self, type_name, query, **kwargs):
        return await self.inner.search(type_name, query, **kwargs)

    async def create(self, type_name, entity_id, data):
        return await self.inner.create(type_name, entity_id, data)

    async def update(self, type_name, entity_id, data):
        return await self.inner.update(type_name, entity_id, data)

    async def delete(self, type_name, entity_id):
        return await self.inner.delete(type_name, entity_id)

    async def related(self, type_name, entity_id, field):
        return await self.inner.related(type_name, entity_id, field)

    async def relate(self, from_type, from_id, field, to_type, to_id, meta=None):
        await self.inner.relate(from_type, from_id, field, to_type, to_id, meta)

    async def unrelate(self, from_type, from_id, field, to_type, to_id):
        await self.inner.unrelate(from_type, from_id, field, to_type, to_id)


# ===========================================================================
# Construction
# ===========================================================================


class TestConstruction:
    def test_accepts_prebuilt_graph(self, provider):
        graph = build_schema_graph(BLOG_SCHEMA)
        db = EntityDatabase(graph, provider)
        assert db.graph is graph

    def test_partial_union_rejected(self, provider):
        schema = {"Post": {"owner": "->User|Ghost?"}, "User": {"name": "string"}}
        with pytest.raises(SchemaValidationError, match="Ghost"):
            EntityDatabase(schema, provider)

    def test_edges_follow_schema(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        assert [(e.from_type, e.name, e.to_type) for e in db.edges()] == [
            ("Post", "author", "Author"),
            ("Post", "tags", "Tag"),
        ]


# ===========================================================================
# Create and read
# ===========================================================================


class TestCreate:
    async def test_returns_hydrated_with_resolved_relations(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        post = await db.create("Post", {"title": "Hello", "tagsHint": ["python"]})

        assert isinstance(post, Hydrated)
        assert post["title"] == "Hello"
        assert "tagsHint" not in post
        author = await post.get_relation("author")
        assert author.type == "Author"
        tags = await post.get_relation("tags")
        assert [t["name"] for t in tags] == ["python"]

    async def test_explicit_id(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        post = await db.create("Post", {"title": "Hello"}, entity_id="post-1")
        assert post.id == "post-1"

    async def test_unknown_type(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        with pytest.raises(UnknownEntityTypeError):
            await db.create("Ghost", {})


class TestReads:
    async def test_get(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        created = await db.create("Author", {"name": "Ada"})
        fetched = await db.get("Author", created.id)
        assert isinstance(fetched, Hydrated)
        assert fetched["name"] == "Ada"
        assert await db.get("Author", "missing") is None

    async def test_get_unknown_type(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        with pytest.raises(UnknownEntityTypeError):
            await db.get("Ghost", "x")

    async def test_list(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        for name in ("Grace", "Ada", "Linus"):
            await db.create("Author", {"name": name})
        authors = await db.list("Author", order_by="name", limit=2)
        assert [a["name"] for a in authors] == ["Ada", "Grace"]
        filtered = await db.list("Author", where={"name": "Linus"})
        assert [a["name"] for a in filtered] == ["Linus"]

    async def test_search(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        await db.create("Tag", {"name": "python"})
        await db.create("Tag", {"name": "rust"})
        results = await db.search("Tag", "pyth")
        assert [r["name"] for r in results] == ["python"]

    async def test_semantic_search(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        await db.create("Tag", {"name": "Electronics"})
        results = await db.semantic_search("Tag", "electronic", min_score=0.8)
        assert [r["name"] for r in results] == ["Electronics"]

    async def test_semantic_search_unsupported_is_empty(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, ListOnlyProvider(provider))
        await db.create("Tag", {"name": "Electronics"})
        assert await db.semantic_search("Tag", "electronic") == []


class TestWrites:
    async def test_update(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        author = await db.create("Author", {"name": "Ada"})
        updated = await db.update("Author", author.id, {"name": "Grace"})
        assert updated["name"] == "Grace"
        assert (await db.get("Author", author.id))["name"] == "Grace"

    async def test_delete(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        author = await db.create("Author", {"name": "Ada"})
        assert await db.delete("Author", author.id) is True
        assert await db.delete("Author", author.id) is False
        assert await db.get("Author", author.id) is None


# ===========================================================================
# Cascade
# ===========================================================================


class TestCascade:
    async def test_no_cascade_by_default(self, provider):
        db = EntityDatabase(ORG_SCHEMA, provider)
        company = await db.create("Company", {"name": "Acme"})
        assert "department" not in company
        assert await provider.list("Department") == []

    async def test_cascade_uses_default_depth(self, provider):
        db = EntityDatabase(ORG_SCHEMA, provider)
        company = await db.create("Company", {"name": "Acme"}, cascade=True)
        department = await company.get_relation("department")
        assert department is not None
        assert len(await provider.list("Person")) == 1

    async def test_configured_default_depth(self, provider):
        db = EntityDatabase(
            ORG_SCHEMA, provider, cascade_config=CascadeConfig(default_max_depth=1)
        )
        await db.create("Company", {"name": "Acme"}, cascade=True)
        assert len(await provider.list("Department")) == 1
        assert await provider.list("Team") == []

    async def test_max_depth_override(self, provider):
        db = EntityDatabase(ORG_SCHEMA, provider)
        events = []
        await db.create(
            "Company", {"name": "Acme"}, max_depth=2, on_progress=events.append
        )
        assert len(await provider.list("Team")) == 1
        assert await provider.list("Person") == []
        assert events[-1].types_generated == ["Department", "Team"]

    async def test_cascade_types(self, provider):
        db = EntityDatabase(ORG_SCHEMA, provider)
        await db.create(
            "Company", {"name": "Acme"}, cascade=True, cascade_types=["Department"]
        )
        assert len(await provider.list("Department")) == 1
        assert await provider.list("Team") == []


# ===========================================================================
# Draft / resolve
# ===========================================================================


class TestDraftFlow:
    async def test_draft_only_persists_nothing(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        draft = await db.create("Post", {"title": "Hello"}, draft_only=True)
        assert isinstance(draft, Draft)
        assert await provider.list("Post") == []
        assert await provider.list("Author") == []

    async def test_resolve_persists_entity_and_edges(self, provider):
        db = EntityDatabase(BLOG_SCHEMA, provider)
        draft = await db.draft("Post", {"title": "Hello", "tagsHint": ["python"]})
        resolved = await db.resolve(draft)

        assert isinstance(resolved, Resolved)
        post = await db.get("Post", resolved.data["$id"])
        assert post["title"] == "Hello"
        author = await post.get_relation("author")
        assert author.id == resolved.data["author"]
        assert author["$generatedBy"] == post.id
        tags = await post.get_relation("tags")
        assert [t.id for t in tags] == resolved.data["tags"]


class TestResolveSkipMode:
    async def test_failed_array_reference_gets_no_relation(self):
        provider = RefusingProvider("Item")
        db = EntityDatabase(ORDER_SCHEMA, provider)
        draft = await db.draft("Order", {"title": "Hello"})

        resolved = await db.resolve(draft, on_error="skip")

        assert [e.field for e in resolved.errors] == ["items"]
        order_id = resolved.data["$id"]
        assert resolved.data["items"] == ["A item for items of Hello"]
        assert provider.relation_meta("Order", order_id, "items") == []
        assert await provider.list("Item") == []
        customer = await provider.get("Customer", resolved.data["customer"])
        assert customer is not None
        links = provider.relation_meta("Order", order_id, "customer")
        assert [r["id"] for r in links] == [customer["$id"]]

    async def test_failed_single_reference_keeps_placeholder(self):
        provider = RefusingProvider("Customer")
        db = EntityDatabase(ORDER_SCHEMA, provider)
        draft = await db.draft("Order", {"title": "Hello"})

        resolved = await db.resolve(draft, on_error="skip")

        assert [e.field for e in resolved.errors] == ["customer"]
        order = await db.get("Order", resolved.data["$id"])
        assert order["customer"] == draft.data["customer"]
        assert await order.get_relation("customer") is None
        assert provider.relation_meta("Order", order.id, "customer") == []
        items = await order.get_relation("items")
        assert [i.id for i in items] == resolved.data["items"]

    async def test_throw_mode_persists_nothing(self):
        provider = RefusingProvider("Item")
        db = EntityDatabase(ORDER_SCHEMA, provider)
        draft = await db.draft("Order", {"title": "Hello"})

        with pytest.raises(RuntimeError, match="cannot create Item"):
            await db.resolve(draft)
        assert await provider.list("Order") == []
