"""Tests for object-level and sub-object-level ordering."""

import json

import pytest

from abap_migration.client.exceptions import AgentError, MigrationCancelledError
from abap_migration.config import DiscoveryConfig
from abap_migration.migration.activity import ActivityRecorder
from abap_migration.migration.discovery import DiscoveredObject, DiscoveredUnit
from abap_migration.migration.ordering import (
    _apply_ranking,
    compute_intra_object_ordering,
    compute_object_order,
)
from abap_migration.migration.parser import parse_dependencies
from tests.conftest import FakeAdvisor


def make_object(sources: dict[str, str | None]) -> DiscoveredObject:
    units = [DiscoveredUnit(name, "PROG/I", f"/src/{name}", "/obj") for name in sources]
    present = {name: text for name, text in sources.items() if text is not None}
    return DiscoveredObject(
        name="ZPROG",
        objtype="PROG/P",
        object_url="/obj",
        units=units,
        sources=present,
        parsed=parse_dependencies(present, units),
    )


def ranking(*entries: tuple[str, int, list[str]]) -> str:
    return json.dumps(
        {"subObjects": [{"name": n, "order": o, "dependsOn": d} for n, o, d in entries]}
    )


@pytest.fixture
def activity(store, broker, project) -> ActivityRecorder:
    return ActivityRecorder(store, broker, project.id)


class TestComputeObjectOrder:
    def test_dependencies_first(self):
        order = compute_object_order({"ZAPP": ["ZLIB"], "ZLIB": [], "ZTOOL": ["ZAPP"]})
        assert order == {"ZLIB": 0, "ZAPP": 1, "ZTOOL": 2}

    def test_cycle_members_share_last_order(self):
        order = compute_object_order({"ZA": ["ZB"], "ZB": ["ZA"], "ZC": []})
        assert order == {"ZC": 0, "ZA": 1, "ZB": 1}

    def test_self_and_unknown_references_are_ignored(self):
        order = compute_object_order({"zroot": ["ZROOT", "ZMISSING"]})
        assert order == {"ZROOT": 0}


class TestIntraObjectOrdering:
    @pytest.mark.asyncio
    async def test_uses_parsed_order(self, token, activity):
        obj = make_object({"ZMAIN": "INCLUDE ztop.", "ZTOP": "DATA x TYPE i."})
        advisor = FakeAdvisor(reply=ranking(("ZMAIN", 0, []), ("ZTOP", 1, [])))

        ordering = await compute_intra_object_ordering(
            obj, advisor, token, activity, DiscoveryConfig()
        )

        assert [(u.name, u.order, u.depends_on) for u in ordering] == [
            ("ZTOP", 0, []),
            ("ZMAIN", 1, ["ZTOP"]),
        ]
        assert advisor.prompts == []

    @pytest.mark.asyncio
    async def test_advisor_used_when_a_unit_did_not_parse(self, token, activity):
        obj = make_object({"ZMAIN": "INCLUDE ztop.", "ZTOP": None})
        advisor = FakeAdvisor(reply=ranking(("ZTOP", 0, []), ("ZMAIN", 1, ["ZTOP", "ZOTHER"])))

        ordering = await compute_intra_object_ordering(
            obj, advisor, token, activity, DiscoveryConfig()
        )

        assert [(u.name, u.order, u.depends_on) for u in ordering] == [
            ("ZTOP", 0, []),
            ("ZMAIN", 1, ["ZTOP"]),
        ]
        assert "detectedDependencies" in advisor.prompts[0]
        assert "(no source)" in advisor.prompts[0]

    @pytest.mark.asyncio
    async def test_advisor_used_on_cycle(self, token, activity):
        obj = make_object({"ZA": "INCLUDE zb.", "ZB": "INCLUDE za."})
        advisor = FakeAdvisor(reply=ranking(("ZB", 0, []), ("ZA", 1, [])))

        ordering = await compute_intra_object_ordering(
            obj, advisor, token, activity, DiscoveryConfig()
        )

        assert [u.name for u in ordering] == ["ZB", "ZA"]

    @pytest.mark.asyncio
    async def test_malformed_reply_falls_back_to_discovery_order(
        self, store, project, token, activity
    ):
        obj = make_object({"ZB": None, "ZA": None})
        advisor = FakeAdvisor(reply="I think ZA goes first")

        ordering = await compute_intra_object_ordering(
            obj, advisor, token, activity, DiscoveryConfig()
        )

        assert [(u.name, u.order, u.depends_on) for u in ordering] == [
            ("ZB", 0, []),
            ("ZA", 1, []),
        ]
        contents = [entry.content for entry in store.list_activity(project.id)]
        assert "ZPROG: AI analysis failed, using sequential ordering" in contents

    @pytest.mark.asyncio
    async def test_failed_call_falls_back_to_discovery_order(self, token, activity):
        obj = make_object({"ZB": None, "ZA": None})
        advisor = FakeAdvisor(error=AgentError("service down"))

        ordering = await compute_intra_object_ordering(
            obj, advisor, token, activity, DiscoveryConfig()
        )

        assert [u.name for u in ordering] == ["ZB", "ZA"]

    @pytest.mark.asyncio
    async def test_no_advisor_uses_discovery_order(self, token, activity):
        obj = make_object({"ZB": None, "ZA": "WRITE 'x'."})

        ordering = await compute_intra_object_ordering(
            obj, None, token, activity, DiscoveryConfig()
        )

        assert [u.name for u in ordering] == ["ZB", "ZA"]

    @pytest.mark.asyncio
    async def test_cancellation_during_advisor_call_propagates(self, token, activity):
        obj = make_object({"ZB": None, "ZA": None})

        class CancellingAdvisor:
            async def rank(self, system_prompt, prompt):
                token.cancel()
                raise AgentError("request aborted")

        with pytest.raises(MigrationCancelledError):
            await compute_intra_object_ordering(
                obj, CancellingAdvisor(), token, activity, DiscoveryConfig()
            )

    @pytest.mark.asyncio
    async def test_cancellation_after_advisor_reply_propagates(self, token, activity):
        obj = make_object({"ZB": None, "ZA": None})

        class CancellingAdvisor:
            async def rank(self, system_prompt, prompt):
                token.cancel()
                return ranking(("ZA", 0, []), ("ZB", 1, []))

        with pytest.raises(MigrationCancelledError):
            await compute_intra_object_ordering(
                obj, CancellingAdvisor(), token, activity, DiscoveryConfig()
            )


class TestApplyRanking:
    def test_unknown_and_duplicate_names_are_dropped(self):
        reply = ranking(("zb", 1, []), ("ZX", 0, []), ("ZB", 2, []), ("ZA", 3, ["zb"]))
        ordering = _apply_ranking(reply, ["ZA", "ZB", "ZC"])

        assert [(u.name, u.order, u.depends_on) for u in ordering] == [
            ("ZB", 0, []),
            ("ZA", 1, ["ZB"]),
            ("ZC", 2, []),
        ]

    def test_fenced_json_reply(self):
        reply = "Here you go:\n```json\n" + ranking(("ZA", 0, [])) + "\n```"
        assert [u.name for u in _apply_ranking(reply, ["ZA"])] == ["ZA"]

    def test_ranking_without_known_names_is_rejected(self):
        with pytest.raises(ValueError):
            _apply_ranking(ranking(("ZX", 0, [])), ["ZA"])

    def test_dependencies_only_point_backwards(self):
        reply = ranking(("ZA", 0, ["ZB"]), ("ZB", 1, ["ZA", "ZC"]), ("ZC", 2, ["ZA", "ZB"]))
        ordering = _apply_ranking(reply, ["ZA", "ZB", "ZC"])

        assert [(u.name, u.order, u.depends_on) for u in ordering] == [
            ("ZA", 0, []),
            ("ZB", 1, ["ZA"]),
            ("ZC", 2, ["ZA", "ZB"]),
        ]
        positions = {u.name: u.order for u in ordering}
        for unit in ordering:
            assert all(positions[dep] < unit.order for dep in unit.depends_on)
