"""
Object-level and sub-object-level ordering.

Objects are ordered across the whole discovery result from their
cross-object custom dependencies. Sub-objects are ordered inside each
object from parsed references, falling back to the ordering advisor and
finally to discovery order.
"""

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from abap_migration.client.exceptions import MigrationCancelledError
from abap_migration.config import DiscoveryConfig
from abap_migration.migration.cancellation import CancellationToken
from abap_migration.migration.parser import OrderedUnit, dependency_order, deterministic_ordering
from abap_migration.migration.prompts import DISCOVERY_SYSTEM_PROMPT, build_ranking_prompt
from abap_migration.migration.protocols import OrderingAdvisor
from abap_migration.utils.logging import get_logger
from abap_migration.utils.parsing import parse_json_reply

if TYPE_CHECKING:
    from abap_migration.migration.activity import ActivityRecorder
    from abap_migration.migration.discovery import DiscoveredObject

logger = get_logger(__name__)


class RankedUnit(BaseModel):
    """One entry of the advisor's ranking."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    order: int
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")
    reason: str | None = None


class AdvisorRanking(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sub_objects: list[RankedUnit] = Field(alias="subObjects")


def compute_object_order(dependencies: Mapping[str, Iterable[str]]) -> dict[str, int]:
    """
    Order discovered objects, dependencies first.

    Args:
        dependencies: Object name to the custom object names it references

    Returns:
        Upper-cased object name to object order. Objects on a cycle share
        the order after the last acyclic object.
    """
    names = {name.upper() for name in dependencies}
    graph: dict[str, list[str]] = {}
    for name, deps in dependencies.items():
        key = name.upper()
        graph[key] = [dep.upper() for dep in deps if dep.upper() in names and dep.upper() != key]

    ordered = dependency_order(graph)
    result = {name: index for index, name in enumerate(ordered)}

    unresolved = [name for name in graph if name not in result]
    if unresolved:
        logger.warning("object_order_cycle", objects=unresolved, order=len(ordered))
    for name in unresolved:
        result[name] = len(ordered)

    return result


def sequential_ordering(names: Iterable[str]) -> list[OrderedUnit]:
    return [OrderedUnit(name=name, order=index) for index, name in enumerate(names)]


async def compute_intra_object_ordering(
    obj: "DiscoveredObject",
    advisor: OrderingAdvisor | None,
    token: CancellationToken,
    activity: "ActivityRecorder",
    config: DiscoveryConfig,
) -> list[OrderedUnit]:
    """
    Order the sub-objects of one discovered object.

    The parsed order is used when every sub-object parsed and the references
    are acyclic. Otherwise the advisor is asked for a ranking. A malformed
    ranking or failed call falls back to discovery order. Cancellation
    during the advisor call propagates.
    """
    unit_names = [unit.name for unit in obj.units]

    if obj.parsed is not None and obj.parsed.all_parsed:
        ordering = deterministic_ordering(obj.parsed, obj.units)
        if ordering is not None:
            return ordering
        logger.info("intra_object_cycle", object=obj.name)

    if advisor is not None:
        activity.record("discovery", f"{obj.name}: analyzing intra-object dependencies with AI...")
        try:
            prompt = build_ranking_prompt(obj.name, obj.objtype, _ranking_summary(obj, config))
            reply = await advisor.rank(DISCOVERY_SYSTEM_PROMPT, prompt)
            token.raise_if_cancelled()
            return _apply_ranking(reply, unit_names)
        except MigrationCancelledError:
            raise
        except Exception as e:
            if token.cancelled:
                raise MigrationCancelledError(token.reason) from e
            logger.warning("advisor_ranking_failed", object=obj.name, error=str(e))
            activity.record(
                "discovery", f"{obj.name}: AI analysis failed, using sequential ordering"
            )

    return sequential_ordering(unit_names)


def _ranking_summary(obj: "DiscoveredObject", config: DiscoveryConfig) -> list[dict]:
    summary = []
    for unit in obj.units:
        entry = {
            "name": unit.name,
            "type": unit.objtype,
            "sourcePreview": obj.sources.get(unit.name, "(no source)")[
                : config.source_preview_chars
            ],
        }
        info = obj.parsed.get(unit.name) if obj.parsed else None
        if info is not None and info.parsed:
            entry["detectedDependencies"] = {
                "implementedInterfaces": info.implemented_interfaces,
                "classReferences": info.class_references,
                "includeReferences": info.include_references,
                "superClass": info.super_class,
                "typeReferences": info.type_references[: config.max_type_hints],
            }
        summary.append(entry)
    return summary


def _apply_ranking(reply: str, unit_names: list[str]) -> list[OrderedUnit]:
    """
    Turn an advisor reply into a complete ordering of ``unit_names``.

    Unknown and duplicate names are dropped. Units the advisor left out
    follow the ranked ones in discovery order. A unit only depends on units
    placed before it.

    Raises:
        pydantic.ValidationError: If the reply does not have the expected shape
    """
    ranking = AdvisorRanking.model_validate(parse_json_reply(reply))

    by_key = {name.upper(): name for name in unit_names}
    ranked: dict[str, RankedUnit] = {}
    for entry in sorted(ranking.sub_objects, key=lambda e: e.order):
        key = entry.name.upper()
        if key in by_key and key not in ranked:
            ranked[key] = entry

    if not ranked:
        raise ValueError("Advisor ranking matched no sub-objects")

    ordered_keys = list(ranked) + [key for key in by_key if key not in ranked]
    result = []
    earlier: set[str] = set()
    for index, key in enumerate(ordered_keys):
        entry = ranked.get(key)
        depends_on = []
        if entry is not None:
            depends_on = [
                by_key[dep]
                for dep in dict.fromkeys(d.upper() for d in entry.depends_on)
                if dep in earlier
            ]
        result.append(OrderedUnit(name=by_key[key], order=index, depends_on=depends_on))
        earlier.add(key)
    return result
