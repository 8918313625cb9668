"""Unit tests for depth-bounded cascade generation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from entigraph.audit import AuditEventType
from entigraph.engine.cascade import CascadeGenerator
from entigraph.engine.cascade import CascadeOptions
from entigraph.engine.generation import EntityGenerator
from entigraph.models.records import CascadePhase
from entigraph.models.records import CascadeProgress
from entigraph.schema.graph import build_schema_graph
from entigraph.storage.memory import MemoryProvider


ORG_SCHEMA = {
    "Company": {"name": "string", "department": "->Department?"},
    "Department": {"name": "string", "company": "<-Company", "team": "->Team?"},
    "Team": {"name": "string", "lead": "~>Person?", "members": "->Person[]?"},
    "Person": {"name": "string"},
}


class FailingProvider(MemoryProvider):
    """MemoryProvider that refuses to create one entity type."""

    def __init__(self, fail_type: str) -> None:
        super().__init__()
        self.fail_type = fail_type

    async def create(self, type_name, entity_id, data):
        if type_name == self.fail_type:
            raise RuntimeError(f"cannot create {type_name}")
        return await super().create(type_name, entity_id, data)


def _cascade(
    provider: MemoryProvider,
    schema: Mapping[str, Any] = ORG_SCHEMA,
    audit_logger=None,
) -> CascadeGenerator:
    graph = build_schema_graph(schema)
    generator = EntityGenerator(graph, provider)
    return CascadeGenerator(graph, provider, generator, audit_logger=audit_logger)


async def _root(provider: MemoryProvider) -> dict:
    return await provider.create("Company", None, {"name": "Acme"})


# ===========================================================================
# Depth bound
# ===========================================================================


class TestDepthBound:
    @pytest.mark.parametrize(
        ("max_depth", "expected_types"),
        [
            (0, []),
            (1, ["Department"]),
            (2, ["Department", "Team"]),
            (3, ["Department", "Person", "Team"]),
        ],
    )
    async def test_types_per_depth(self, provider, max_depth, expected_types):
        root = await _root(provider)
        result = await _cascade(provider).run(
            "Company", root, CascadeOptions(max_depth=max_depth)
        )
        assert result.types_generated == expected_types

    async def test_entity_counts(self, provider):
        root = await _root(provider)
        result = await _cascade(provider).run("Company", root, CascadeOptions(max_depth=3))
        # Department, Team, lead and one member
        assert result.total_entities_created == 4
        assert len(await provider.list("Person")) == 2

    async def test_default_depth_from_config(self, provider):
        root = await _root(provider)
        result = await _cascade(provider).run("Company", root)
        assert "Person" in result.types_generated

    async def test_root_is_refreshed_and_linked(self, provider):
        root = await _root(provider)
        result = await _cascade(provider).run("Company", root, CascadeOptions(max_depth=1))
        department_id = result.root["department"]
        department = await provider.get("Department", department_id)
        assert department["company"] == root["$id"]
        assert department["$generatedBy"] == root["$id"]
        related = await provider.related("Company", root["$id"], "department")
        assert [r["$id"] for r in related] == [department_id]

    async def test_array_field_stores_list(self, provider):
        root = await _root(provider)
        result = await _cascade(provider).run("Company", root, CascadeOptions(max_depth=3))
        department = await provider.get("Department", result.root["department"])
        team = await provider.get("Team", department["team"])
        assert isinstance(team["members"], list)
        assert len(team["members"]) == 1
        assert isinstance(team["lead"], str)

    async def test_rerun_creates_nothing_new(self, provider):
        cascade = _cascade(provider)
        root = await _root(provider)
        first = await cascade.run("Company", root, CascadeOptions(max_depth=2))
        second = await cascade.run("Company", first.root, CascadeOptions(max_depth=2))
        assert first.total_entities_created == 2
        assert second.total_entities_created == 0
        assert second.types_generated == []

    async def test_deeper_rerun_extends_existing_tree(self, provider):
        cascade = _cascade(provider)
        root = await _root(provider)
        first = await cascade.run("Company", root, CascadeOptions(max_depth=1))
        second = await cascade.run("Company", first.root, CascadeOptions(max_depth=2))
        assert second.types_generated == ["Team"]
        assert len(await provider.list("Department")) == 1


# ===========================================================================
# Allow-list
# ===========================================================================


class TestCascadeTypes:
    async def test_only_allowed_types_are_generated(self, provider):
        root = await _root(provider)
        result = await _cascade(provider).run(
            "Company",
            root,
            CascadeOptions(max_depth=3, cascade_types={"Department"}),
        )
        assert result.types_generated == ["Department"]
        assert await provider.list("Team") == []

    async def test_disallowed_first_hop_stops_everything(self, provider):
        root = await _root(provider)
        result = await _cascade(provider).run(
            "Company",
            root,
            CascadeOptions(max_depth=3, cascade_types=["Team", "Person"]),
        )
        assert result.total_entities_created == 0
        assert result.types_generated == []


# ===========================================================================
# Progress and errors
# ===========================================================================


class TestProgress:
    async def test_generating_then_complete(self, provider):
        events: list[CascadeProgress] = []
        root = await _root(provider)
        await _cascade(provider).run(
            "Company",
            root,
            CascadeOptions(max_depth=2, on_progress=events.append),
        )
        assert [(e.phase, e.depth, e.current_type, e.field) for e in events] == [
            (CascadePhase.generating, 0, "Company", "department"),
            (CascadePhase.generating, 1, "Department", "team"),
            (CascadePhase.complete, 0, "Company", None),
        ]
        assert events[-1].total_entities_created == 2
        assert events[-1].types_generated == ["Department", "Team"]

    async def test_async_callback(self, provider):
        seen = []

        async def on_progress(progress: CascadeProgress) -> None:
            seen.append(progress.phase)

        root = await _root(provider)
        await _cascade(provider).run(
            "Company", root, CascadeOptions(max_depth=1, on_progress=on_progress)
        )
        assert seen == [CascadePhase.generating, CascadePhase.complete]


class TestErrors:
    async def test_error_reported_and_cascade_continues(self):
        provider = FailingProvider("Team")
        errors = []
        events: list[CascadeProgress] = []
        root = await _root(provider)

        result = await _cascade(provider).run(
            "Company",
            root,
            CascadeOptions(
                max_depth=3,
                on_error=lambda exc, ctx: errors.append((exc, ctx)),
                on_progress=events.append,
            ),
        )

        assert result.types_generated == ["Department"]
        assert result.errors == ["Department.team: cannot create Team"]
        ((exc, ctx),) = errors
        assert isinstance(exc, RuntimeError)
        assert (ctx.type, ctx.depth, ctx.field) == ("Department", 1, "team")
        assert events[-1].phase is CascadePhase.complete

    async def test_stop_on_error_reraises_after_error_event(self):
        provider = FailingProvider("Team")
        errors = []
        events: list[CascadeProgress] = []
        root = await _root(provider)

        with pytest.raises(RuntimeError, match="cannot create Team"):
            await _cascade(provider).run(
                "Company",
                root,
                CascadeOptions(
                    max_depth=3,
                    stop_on_error=True,
                    on_error=lambda exc, ctx: errors.append(ctx),
                    on_progress=events.append,
                ),
            )

        assert len(errors) == 1
        assert events[-1].phase is CascadePhase.error


class TestAudit:
    async def test_cascade_run_event(self, provider, audit_logger):
        root = await _root(provider)
        await _cascade(provider, audit_logger=audit_logger).run(
            "Company", root, CascadeOptions(max_depth=1)
        )
        (event,) = await audit_logger.read_events(event_type=AuditEventType.CASCADE_RUN)
        assert event.entity_id == root["$id"]
        assert event.payload["total_entities_created"] == 1
