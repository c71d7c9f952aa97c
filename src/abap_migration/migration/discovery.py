"""
Discovery of a project's objects and sub-objects.

Discovery crawls the source system breadth-first from the project's root
object, following references to customer objects. The discovered objects
are then ordered, checked against the target system and persisted as the
project's sub-objects in one write.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from abap_migration.client.exceptions import ABAPMigrationError, MigrationCancelledError
from abap_migration.config import DiscoveryConfig
from abap_migration.migration.activity import ActivityRecorder
from abap_migration.migration.cancellation import CancellationToken
from abap_migration.migration.events import EventBroker
from abap_migration.migration.models import Project
from abap_migration.migration.ordering import compute_intra_object_ordering, compute_object_order
from abap_migration.migration.parser import ParsedDependencies, parse_dependencies
from abap_migration.migration.protocols import OrderingAdvisor, SourceRepository, TargetProbe
from abap_migration.migration.store import MigrationStore
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DiscoveredUnit:
    """One sub-object as enumerated from an object's structure."""

    name: str
    objtype: str
    source_url: str
    object_url: str


@dataclass
class DiscoveredObject:
    """One crawled object with its sub-objects, sources and references."""

    name: str
    objtype: str
    object_url: str
    units: list[DiscoveredUnit]
    sources: dict[str, str] = field(default_factory=dict)
    parsed: ParsedDependencies | None = None
    external_dependencies: list[str] = field(default_factory=list)


def extract_sub_objects(
    structure: dict[str, Any], parent_name: str, parent_type: str, object_url: str
) -> list[DiscoveredUnit]:
    """
    Enumerate the sub-objects of an object from its structure.

    Each entry of the structure's ``includes`` list becomes a sub-object.
    Objects without includes are a single sub-object whose source is the
    object's main source.
    """
    units: list[DiscoveredUnit] = []

    includes = structure.get("includes")
    if isinstance(includes, list):
        for inc in includes:
            if not isinstance(inc, dict):
                continue
            units.append(
                DiscoveredUnit(
                    name=inc.get("adtcore:name") or inc.get("name") or parent_name,
                    objtype=inc.get("adtcore:type") or inc.get("type") or parent_type,
                    source_url=inc.get("source:uri") or inc.get("sourceUri") or "",
                    object_url=inc.get("adtcore:uri") or inc.get("uri") or object_url,
                )
            )

    if not units:
        units.append(
            DiscoveredUnit(
                name=parent_name,
                objtype=parent_type,
                source_url=_main_source_url(structure, object_url),
                object_url=object_url,
            )
        )

    return units


def _main_source_url(structure: dict[str, Any], object_url: str) -> str:
    if structure.get("sourceUri"):
        return structure["sourceUri"]
    links = structure.get("links")
    if isinstance(links, list):
        for link in links:
            if isinstance(link, dict) and link.get("rel") == "source" and link.get("href"):
                return link["href"]
    return f"{object_url}/source/main"


class DiscoveryCrawler:
    """
    Breadth-first crawl of an object and its transitive customer dependencies.

    A failure to resolve or read one object is logged and that object is
    skipped. Only cancellation stops the crawl.
    """

    def __init__(
        self,
        source: SourceRepository,
        activity: ActivityRecorder,
        token: CancellationToken,
        config: DiscoveryConfig,
    ):
        self.source = source
        self.activity = activity
        self.token = token
        self.config = config

    async def crawl(self, root_name: str, root_type: str) -> list[DiscoveredObject]:
        frontier: deque[tuple[str, str]] = deque([(root_name, root_type)])
        visited: set[str] = set()
        discovered: list[DiscoveredObject] = []

        while frontier:
            self.token.raise_if_cancelled()
            name, objtype = frontier.popleft()
            key = name.upper()
            if key in visited:
                continue
            visited.add(key)

            self.activity.record("discovery", f"Discovering {name} ({objtype})...")
            try:
                obj = await self.discover_object(name, objtype)
            except MigrationCancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "discovery_node_failed",
                    name=name,
                    objtype=objtype,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.activity.record("discovery", f"Failed to discover {name}: {e}")
                continue
            discovered.append(obj)

            for dep_name in obj.external_dependencies:
                if dep_name.upper() in visited:
                    continue
                self.token.raise_if_cancelled()
                try:
                    dep_type = await self.source.find_object_type(dep_name)
                except MigrationCancelledError:
                    raise
                except ABAPMigrationError as e:
                    logger.warning("object_type_lookup_failed", name=dep_name, error=str(e))
                    dep_type = None
                self.token.raise_if_cancelled()
                if dep_type:
                    frontier.append((dep_name, dep_type))
                else:
                    self.activity.record(
                        "discovery", f"Could not find {dep_name} in source system, skipping"
                    )

        unit_count = sum(len(obj.units) for obj in discovered)
        self.activity.record(
            "discovery",
            f"Discovered {len(discovered)} ABAP object(s) with {unit_count} sub-objects total",
        )
        logger.info("discovery_crawl_complete", objects=len(discovered), units=unit_count)
        return discovered

    async def discover_object(self, name: str, objtype: str) -> DiscoveredObject:
        """
        Resolve one object and read its sub-objects' sources.

        Raises:
            ABAPMigrationError: If the object cannot be resolved or its
                structure cannot be read
        """
        object_url = await self.source.resolve_object(name, objtype)
        self.token.raise_if_cancelled()

        structure = await self.source.get_structure(object_url)
        self.token.raise_if_cancelled()

        units = extract_sub_objects(structure, name, objtype, object_url)
        self.activity.record("discovery", f"{name}: found {len(units)} sub-object(s)")

        sources: dict[str, str] = {}
        for unit in units:
            self.token.raise_if_cancelled()
            if not unit.source_url:
                continue
            try:
                source = await self.source.get_source(unit.source_url)
            except MigrationCancelledError:
                raise
            except ABAPMigrationError as e:
                logger.warning("source_fetch_failed", unit=unit.name, error=str(e))
                self.activity.record(
                    "discovery", f"Could not fetch source for {unit.name}, skipping"
                )
                continue
            sources[unit.name] = source
            self.activity.record(
                "discovery", f"Fetched source for {unit.name} ({len(source)} chars)"
            )
        self.token.raise_if_cancelled()

        parsed = parse_dependencies(sources, units)
        parsed_count = sum(1 for info in parsed.sub_objects if info.parsed)
        self.activity.record("discovery", f"{name}: parsed {parsed_count}/{len(units)} sub-objects")

        external = [
            dep for dep in parsed.external_dependencies if self.config.is_customer_object(dep)
        ]
        if external:
            self.activity.record("discovery", f"{name}: custom dependencies: {', '.join(external)}")

        return DiscoveredObject(
            name=name,
            objtype=objtype,
            object_url=object_url,
            units=units,
            sources=sources,
            parsed=parsed,
            external_dependencies=external,
        )


class TargetExistenceProber:
    """Finds discovered objects that already exist in the target system."""

    def __init__(self, target: TargetProbe, activity: ActivityRecorder, token: CancellationToken):
        self.target = target
        self.activity = activity
        self.token = token

    async def probe(self, objects: list[DiscoveredObject], root_name: str) -> set[str]:
        """
        Return the upper-cased names of objects present in the target.

        The root object is never probed. A failed lookup keeps the object
        in scope.
        """
        present: set[str] = set()

        for obj in objects:
            self.token.raise_if_cancelled()
            if obj.name.upper() == root_name.upper():
                continue
            try:
                exists = await self.target.object_exists(obj.name, obj.objtype)
            except MigrationCancelledError:
                raise
            except ABAPMigrationError as e:
                logger.warning("target_probe_failed", name=obj.name, error=str(e))
                self.activity.record(
                    "discovery", f"Could not check {obj.name} in target system, keeping included"
                )
                continue
            self.token.raise_if_cancelled()
            if exists:
                present.add(obj.name.upper())
                self.activity.record(
                    "discovery", f"{obj.name} found in target system, will be auto-excluded"
                )

        if present:
            self.activity.record(
                "discovery",
                f"Auto-excluded {len(present)} object(s) already present in target system",
            )
        return present


class DiscoveryRunner:
    """
    Runs a complete discovery for one project and persists the result.

    Nothing is written to the store until every checkpoint has passed, so a
    cancelled discovery leaves the project without sub-objects.
    """

    def __init__(
        self,
        store: MigrationStore,
        broker: EventBroker,
        source: SourceRepository,
        target: TargetProbe,
        advisor: OrderingAdvisor | None,
        token: CancellationToken,
        config: DiscoveryConfig,
    ):
        self.store = store
        self.broker = broker
        self.source = source
        self.target = target
        self.advisor = advisor
        self.token = token
        self.config = config

    async def run(self, project: Project) -> int:
        """
        Discover, order and persist the project's sub-objects.

        Returns:
            Number of sub-objects created
        """
        activity = ActivityRecorder(self.store, self.broker, project.id)
        activity.record(
            "discovery", f"Starting recursive discovery for {project.name} ({project.objtype})"
        )

        crawler = DiscoveryCrawler(self.source, activity, self.token, self.config)
        objects = await crawler.crawl(project.name, project.objtype)
        self.token.raise_if_cancelled()

        object_order = compute_object_order(
            {obj.name: obj.external_dependencies for obj in objects}
        )

        prober = TargetExistenceProber(self.target, activity, self.token)
        present = await prober.probe(objects, project.name)

        rows: list[dict[str, Any]] = []
        exclusions: list[tuple[str, str]] = []
        for obj in objects:
            self.token.raise_if_cancelled()
            ordering = await compute_intra_object_ordering(
                obj, self.advisor, self.token, activity, self.config
            )
            by_name = {entry.name.upper(): entry for entry in ordering}
            excluded = obj.name.upper() in present

            for unit in obj.units:
                entry = by_name.get(unit.name.upper())
                rows.append(
                    {
                        "name": unit.name,
                        "objtype": unit.objtype,
                        "source_url": unit.source_url,
                        "object_url": unit.object_url,
                        "original_source": obj.sources.get(unit.name, ""),
                        "status": "pending",
                        "order": entry.order if entry else 0,
                        "depends_on": (entry.depends_on or None) if entry else None,
                        "parent_object_name": obj.name,
                        "parent_object_type": obj.objtype,
                        "object_order": object_order.get(obj.name.upper(), 0),
                        "excluded": excluded,
                    }
                )
                if excluded:
                    exclusions.append((unit.name, obj.name))

        self.token.raise_if_cancelled()
        self.store.create_sub_objects(project.id, rows)

        for unit_name, object_name in exclusions:
            activity.record(
                "discovery",
                f"Auto-excluded {unit_name}: {object_name} already exists in target system",
            )

        activity.record(
            "discovery",
            f"Discovery complete. {len(objects)} objects, "
            f"{len(rows)} sub-objects ready for migration.",
        )
        self.broker.publish(
            project.id,
            "discovery_complete",
            {"unit_count": len(rows), "object_count": len(objects)},
        )
        logger.info(
            "discovery_complete", project_id=project.id, objects=len(objects), units=len(rows)
        )
        return len(rows)
