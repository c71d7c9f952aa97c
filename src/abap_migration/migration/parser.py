"""
ABAP dependency parser.

This module splits ABAP source into statements, extracts the structural
references each sub-object makes (implemented interfaces, class references,
includes, super class and declared types) and derives a dependency order
for a closed set of sub-objects.

Only interfaces, class references, includes and the super class form graph
edges. Type references are collected as hints for the ordering advisor.
"""

import re
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from abap_migration.client.exceptions import DependencyParseError

BUILTIN_TYPES = frozenset(
    {
        "STRING",
        "XSTRING",
        "I",
        "INT8",
        "F",
        "D",
        "T",
        "C",
        "N",
        "X",
        "P",
        "ABAP_BOOL",
        "ABAP_TRUE",
        "ABAP_FALSE",
        "FLAG",
        "CHAR1",
        "SY",
        "SYST",
        "ANY",
        "DATA",
        "CLIKE",
        "CSEQUENCE",
        "NUMERIC",
        "SIMPLE",
        "TABLE",
        "SORTED",
        "STANDARD",
        "HASHED",
        "REF",
        "OBJECT",
        "XSEQUENCE",
    }
)

NO_SOURCE_ERROR = "No source code available"

# Object names may carry a namespace prefix such as /ABC/
_NAME = r"((?:/[A-Z0-9_]+/)?[A-Z0-9_]+)"
_TYPE_NAME = r"((?:/[A-Z0-9_]+/)?[A-Z0-9_][A-Z0-9_~\-/]*)"

_INTERFACES = re.compile(rf"^INTERFACES\s+{_NAME}")
_INCLUDE = re.compile(rf"^INCLUDE\s+(?!TYPE\b|STRUCTURE\b){_NAME}")
_SUPER_CLASS = re.compile(rf"^CLASS\s+\S+\s+DEFINITION\b.*?\bINHERITING\s+FROM\s+{_NAME}")
_CLASS_REFERENCES = (
    re.compile(rf"\bTYPE\s+REF\s+TO\s+{_NAME}"),
    re.compile(rf"(?<![A-Z0-9_/>-]){_NAME}=>"),
    re.compile(rf"\bNEW\s+{_NAME}\s*\("),
    re.compile(rf"\bCAST\s+{_NAME}\s*\("),
    re.compile(rf"^CREATE\s+OBJECT\s+\S+\s+TYPE\s+{_NAME}"),
)
_TYPE_REFERENCE = re.compile(
    r"\b(?:TYPE|LIKE)"
    r"(?:\s+(?:STANDARD|SORTED|HASHED|ANY|INDEX))?"
    r"(?:\s+TABLE)?"
    r"(?:\s+(?:OF|RANGE\s+OF|LINE\s+OF))?"
    rf"\s+(?!REF\s+TO\b){_TYPE_NAME}"
)
_WHITESPACE = re.compile(r"\s+")


class NamedUnit(Protocol):
    name: str
    objtype: str


@dataclass
class DependencyInfo:
    """Structural references extracted from one sub-object."""

    name: str
    implemented_interfaces: list[str] = field(default_factory=list)
    class_references: list[str] = field(default_factory=list)
    include_references: list[str] = field(default_factory=list)
    super_class: str | None = None
    type_references: list[str] = field(default_factory=list)
    parsed: bool = False
    parse_error: str | None = None

    def structural_references(self) -> list[str]:
        """References that create ordering edges, in first-seen order."""
        refs = [*self.implemented_interfaces, *self.class_references, *self.include_references]
        if self.super_class:
            refs.append(self.super_class)
        return list(dict.fromkeys(refs))


@dataclass
class ParsedDependencies:
    sub_objects: list[DependencyInfo]
    external_dependencies: list[str]

    def get(self, name: str) -> DependencyInfo | None:
        key = name.upper()
        for info in self.sub_objects:
            if info.name.upper() == key:
                return info
        return None

    @property
    def all_parsed(self) -> bool:
        return all(info.parsed for info in self.sub_objects)


@dataclass
class OrderedUnit:
    """Position of a sub-object within its parent object."""

    name: str
    order: int
    depends_on: list[str] = field(default_factory=list)


def split_statements(source: str) -> list[str]:
    """
    Split ABAP source into normalized statements.

    Comments are dropped, literals are collapsed to empty placeholders and
    chained statements (``DATA: a TYPE i, b TYPE string.``) are expanded
    into one statement per chain element. Statements are upper-cased with
    whitespace collapsed.

    Raises:
        DependencyParseError: On an unterminated literal or a final
            statement without a period
    """
    statements: list[str] = []
    current: list[str] = []
    chain_prefix: str | None = None
    chain_parts: list[str] = []
    depth = 0

    i = 0
    line_start = True
    while i < len(source):
        ch = source[i]

        if line_start and ch == "*":
            i = _skip_to_eol(source, i)
            continue
        line_start = ch == "\n"

        if ch == '"':
            i = _skip_to_eol(source, i)
        elif ch in "'`|":
            current.append(ch * 2)
            i = _literal_end(source, i) + 1
        elif ch == ":" and chain_prefix is None and depth == 0:
            chain_prefix = "".join(current)
            current.clear()
            i += 1
        elif ch == "," and chain_prefix is not None and depth == 0:
            chain_parts.append("".join(current))
            current.clear()
            i += 1
        elif ch == ".":
            if chain_prefix is None:
                _append(statements, "".join(current))
            else:
                chain_parts.append("".join(current))
                for part in chain_parts:
                    _append(statements, f"{chain_prefix} {part}")
            current.clear()
            chain_parts.clear()
            chain_prefix = None
            depth = 0
            i += 1
        else:
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth = max(depth - 1, 0)
            current.append(ch)
            i += 1

    if "".join(current).strip() or chain_prefix is not None:
        raise DependencyParseError("Statement not terminated by a period")

    return statements


def _append(statements: list[str], text: str) -> None:
    normalized = _WHITESPACE.sub(" ", text).strip().upper()
    if normalized:
        statements.append(normalized)


def _skip_to_eol(source: str, i: int) -> int:
    end = source.find("\n", i)
    return len(source) if end == -1 else end


def _literal_end(source: str, start: int) -> int:
    """Index of the delimiter closing the literal opened at ``start``."""
    quote = source[start]
    i = start + 1
    while i < len(source):
        ch = source[i]
        if quote == "|" and ch == "\\":
            i += 2
            continue
        if ch == "\n" and quote != "|":
            break
        if ch == quote:
            if quote != "|" and i + 1 < len(source) and source[i + 1] == quote:
                i += 2
                continue
            return i
        i += 1
    line = source.count("\n", 0, start) + 1
    raise DependencyParseError(f"Unterminated literal starting on line {line}")


def extract_dependencies(name: str, source: str) -> DependencyInfo:
    """
    Extract structural references from one sub-object's source.

    Raises:
        DependencyParseError: If the source cannot be split into statements
    """
    info = DependencyInfo(name=name, parsed=True)

    for statement in split_statements(source):
        match = _INTERFACES.match(statement)
        if match:
            info.implemented_interfaces.append(match.group(1))

        match = _INCLUDE.match(statement)
        if match:
            info.include_references.append(match.group(1))

        match = _SUPER_CLASS.match(statement)
        if match:
            info.super_class = match.group(1)

        for pattern in _CLASS_REFERENCES:
            for ref in pattern.findall(statement):
                if ref not in BUILTIN_TYPES:
                    info.class_references.append(ref)

        for ref in _TYPE_REFERENCE.findall(statement):
            if _is_custom_type(ref):
                info.type_references.append(ref)

    info.implemented_interfaces = list(dict.fromkeys(info.implemented_interfaces))
    info.class_references = list(dict.fromkeys(info.class_references))
    info.include_references = list(dict.fromkeys(info.include_references))
    info.type_references = list(dict.fromkeys(info.type_references))
    return info


def _is_custom_type(name: str) -> bool:
    if "-" in name or "~" in name:
        return False
    return name not in BUILTIN_TYPES and len(name) > 1


def parse_dependencies(
    sources: Mapping[str, str], sub_objects: Sequence[NamedUnit]
) -> ParsedDependencies:
    """
    Parse every sub-object of one object and collect its external references.

    A sub-object with no source, or whose source fails to parse, is recorded
    with ``parsed=False`` and contributes no references.

    Args:
        sources: Source text keyed by sub-object name
        sub_objects: The closed set of sub-objects

    Returns:
        Per-sub-object dependency info plus the structural references that
        point outside the set, in first-seen order
    """
    own_names = {sub.name.upper() for sub in sub_objects}
    results: list[DependencyInfo] = []

    for sub in sub_objects:
        source = sources.get(sub.name)
        if not source:
            results.append(DependencyInfo(name=sub.name, parse_error=NO_SOURCE_ERROR))
            continue
        try:
            results.append(extract_dependencies(sub.name, source))
        except DependencyParseError as e:
            results.append(DependencyInfo(name=sub.name, parse_error=str(e)))

    external: dict[str, None] = {}
    for info in results:
        for ref in info.structural_references():
            if ref not in own_names:
                external[ref] = None

    return ParsedDependencies(sub_objects=results, external_dependencies=list(external))


def dependency_order(graph: Mapping[str, Iterable[str]]) -> list[str]:
    """
    Emit nodes so that every dependency precedes its dependents.

    ``graph[a]`` holds the nodes ``a`` depends on. Edges to nodes outside
    the graph are ignored. Nodes on or behind a cycle are never emitted.
    """
    in_degree: dict[str, int] = {}
    dependents: dict[str, list[str]] = {node: [] for node in graph}

    for node, deps in graph.items():
        known = {dep for dep in deps if dep in dependents}
        in_degree[node] = len(known)
        for dep in known:
            dependents[dep].append(node)

    queue = deque(node for node, degree in in_degree.items() if degree == 0)
    ordered: list[str] = []
    while queue:
        node = queue.popleft()
        ordered.append(node)
        for dependent in dependents[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    return ordered


def topological_order(graph: Mapping[str, Iterable[str]]) -> list[str] | None:
    """
    Order a dependency graph, dependencies first.

    Args:
        graph: Mapping from node to the nodes it depends on

    Returns:
        Every node in dependency order, or None if the graph has a cycle
    """
    ordered = dependency_order(graph)
    if len(ordered) != len(graph):
        return None
    return ordered


def deterministic_ordering(
    deps: ParsedDependencies, sub_objects: Sequence[NamedUnit]
) -> list[OrderedUnit] | None:
    """
    Order sub-objects of one object from their parsed references.

    Returns:
        Ordered units with in-object ``depends_on`` lists, or None when the
        references form a cycle
    """
    by_key = {sub.name.upper(): sub.name for sub in sub_objects}

    graph: dict[str, list[str]] = {}
    for key in by_key:
        info = deps.get(key)
        refs = info.structural_references() if info else []
        graph[key] = [ref for ref in refs if ref in by_key and ref != key]

    ordered = topological_order(graph)
    if ordered is None:
        return None

    return [
        OrderedUnit(
            name=by_key[key],
            order=index,
            depends_on=[by_key[dep] for dep in graph[key]],
        )
        for index, key in enumerate(ordered)
    ]
