"""
Dependency graph, reverse-dependency closure and build ordering for workspace packages.

This module provides:
- Construction of the buildable-package dependency map from package.json files
- Transitive dependent (reverse-dependency) closure of a set of changed packages
- Depth-first topological ordering of build targets that tolerates cycles

Traversals are iterative so deep graphs do not hit the recursion limit.
"""

import logging
from collections.abc import Iterator
from pathlib import Path

import networkx as nx

from ..errors import ManifestError, WorkspaceManifestError
from ..models.sync_models import BuildReason, BuildTarget, ChangedModule, DependencyRecord
from .workspace_registry import PACKAGE_MANIFEST, expand_pattern, read_package_manifest, read_workspace_patterns

logger = logging.getLogger(__name__)

DEFAULT_BUILD_SCRIPT = "build"

_UNVISITED, _VISITING, _VISITED = 0, 1, 2


def build_dependency_map(root_dir: str | Path, build_script: str = DEFAULT_BUILD_SCRIPT) -> dict[str, DependencyRecord]:
    """Collect every buildable workspace package and its declared dependencies.

    Packages without the build script are left out, so only buildable
    packages take part in the dependency graph. Unreadable manifests are
    logged and skipped.

    Args:
        root_dir: Workspace root containing pnpm-workspace.yaml
        build_script: Script name a package must declare to be included

    Returns:
        Mapping of declared package name to its dependency record
    """
    root = Path(root_dir)
    dependency_map: dict[str, DependencyRecord] = {}

    try:
        patterns = read_workspace_patterns(root)
    except WorkspaceManifestError as e:
        logger.error(str(e))
        return dependency_map

    if patterns is None:
        logger.warning(f"Workspace manifest not found in {root}")
        return dependency_map

    include, _exclude = patterns
    for pattern in include:
        for match in expand_pattern(root, pattern):
            if "node_modules" in Path(match).parts:
                continue
            manifest_path = root / match / PACKAGE_MANIFEST
            if not manifest_path.exists():
                continue

            try:
                manifest = read_package_manifest(manifest_path)
            except ManifestError as e:
                logger.warning(f"Skipping package: {e}")
                continue

            if not manifest.has_script(build_script):
                logger.debug(f"Skipping {match}: no '{build_script}' script")
                continue
            if not manifest.name:
                logger.warning(f"Skipping {manifest_path}: package has no name")
                continue
            if manifest.name in dependency_map:
                logger.warning(
                    f"Duplicate package name '{manifest.name}' at {root / match}, "
                    f"keeping {dependency_map[manifest.name].root_path}"
                )
                continue

            dependency_map[manifest.name] = DependencyRecord(
                name=manifest.name,
                root_path=root / match,
                declared_dependencies=tuple(manifest.all_dependency_names()),
            )

    return dependency_map


class DependencyGraph:
    """Directed graph of workspace packages with edges from dependency to dependent.

    Dependencies outside the workspace become plain nodes without a record.
    """

    def __init__(self, dependency_map: dict[str, DependencyRecord]):
        self.records = dependency_map
        self.graph = nx.DiGraph()
        for name in dependency_map:
            self.graph.add_node(name)
        # Successor order follows dependency_map order, which keeps traversals deterministic
        for name, record in dependency_map.items():
            for dep in record.declared_dependencies:
                self.graph.add_edge(dep, name)

    def get_dependents(self, name: str) -> list[str]:
        """Packages that directly declare a dependency on name."""
        if name not in self.graph:
            return []
        return list(self.graph.successors(name))

    def get_dependencies(self, name: str) -> list[str]:
        """Declared dependencies of name, in manifest order."""
        record = self.records.get(name)
        return list(record.declared_dependencies) if record else []

    def transitive_dependents(self, seed: str) -> list[str]:
        """Every package that depends on seed directly or transitively.

        Cycle safe: a package is expanded at most once per call. A cycle back
        to the seed lists the seed itself among its dependents.
        """
        found: dict[str, None] = {}
        expanded = {seed}
        stack: list[Iterator[str]] = [iter(self.get_dependents(seed))]

        while stack:
            dependent = next(stack[-1], None)
            if dependent is None:
                stack.pop()
                continue
            found.setdefault(dependent, None)
            if dependent not in expanded:
                expanded.add(dependent)
                stack.append(iter(self.get_dependents(dependent)))

        return list(found)


def find_dependents(
    changed_modules: list[ChangedModule], dependency_map: dict[str, DependencyRecord]
) -> list[BuildTarget]:
    """Expand changed modules into the full set of packages that must be rebuilt.

    Args:
        changed_modules: Directly changed packages
        dependency_map: Buildable packages of the workspace

    Returns:
        Changed modules first (reason CHANGED), then their transitive
        dependents (reason DEPENDENT) in discovery order. A dependent reached
        from several changed modules appears once, listing each of them in
        depended_by.
    """
    targets: dict[str, BuildTarget] = {}
    for module in changed_modules:
        if module.module_name not in targets:
            targets[module.module_name] = BuildTarget(
                module_name=module.module_name,
                module_path=module.module_path,
                reason=BuildReason.CHANGED,
            )

    graph = DependencyGraph(dependency_map)
    for module in changed_modules:
        for dependent in graph.transitive_dependents(module.module_name):
            record = dependency_map.get(dependent)
            if record is None:
                continue

            existing = targets.get(dependent)
            if existing is None:
                targets[dependent] = BuildTarget(
                    module_name=dependent,
                    module_path=record.root_path,
                    reason=BuildReason.DEPENDENT,
                    depended_by=[module.module_name],
                )
            elif existing.reason is BuildReason.DEPENDENT and module.module_name not in existing.depended_by:
                existing.depended_by.append(module.module_name)

    return list(targets.values())


def topological_sort(targets: list[BuildTarget], dependency_map: dict[str, DependencyRecord]) -> list[BuildTarget]:
    """Order targets so each target's in-set dependencies are built before it.

    Depth-first post-order over targets in the given order, following each
    target's declared dependencies in manifest order. Dependencies outside the
    target set are ignored. An edge back into the current path is reported as
    a cycle and skipped, so on cyclic graphs the order is best effort.
    """
    index_of: dict[str, int] = {}
    unique: list[BuildTarget] = []
    for target in targets:
        if target.module_name not in index_of:
            index_of[target.module_name] = len(unique)
            unique.append(target)

    def in_set_dependencies(index: int) -> Iterator[int]:
        record = dependency_map.get(unique[index].module_name)
        if record is None:
            return iter(())
        return iter([index_of[dep] for dep in record.declared_dependencies if dep in index_of])

    state = [_UNVISITED] * len(unique)
    ordered: list[BuildTarget] = []

    for start in range(len(unique)):
        if state[start] != _UNVISITED:
            continue
        state[start] = _VISITING
        stack: list[tuple[int, Iterator[int]]] = [(start, in_set_dependencies(start))]

        while stack:
            current, deps = stack[-1]
            dep = next(deps, None)
            if dep is None:
                stack.pop()
                state[current] = _VISITED
                ordered.append(unique[current])
                continue
            if state[dep] == _VISITED:
                continue
            if state[dep] == _VISITING:
                logger.warning(
                    f"Circular dependency detected: {unique[current].module_name} -> {unique[dep].module_name}"
                )
                continue
            state[dep] = _VISITING
            stack.append((dep, in_set_dependencies(dep)))

    return ordered
