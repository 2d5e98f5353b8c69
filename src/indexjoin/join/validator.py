"""Structural validation of join configurations and stage planning."""
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from loguru import logger

from indexjoin.config import JoinCondition, JoinConfiguration
from indexjoin.exceptions import ConfigurationError, CyclicJoinError

# source id -> list of (neighbour source id, condition id)
JoinGraph = Dict[str, List[Tuple[str, str]]]

_MIRRORED = {'inner': 'inner', 'left': 'right', 'right': 'left', 'full': 'full'}


@dataclass(frozen=True)
class JoinStage:
    """One executable step of a join chain.

    ``left_source_id`` is already part of the accumulated tuples (except for the
    first stage, where both sides are fetched); ``right_source_id`` is new.
    """
    index: int
    condition: JoinCondition
    left_source_id: str
    left_field: str
    right_source_id: str
    right_field: str
    join_type: str


def build_join_graph(cfg: JoinConfiguration, skip: frozenset = frozenset()) -> JoinGraph:
    """Build an undirected adjacency list over source ids, one edge per condition."""
    graph: JoinGraph = {s.id: [] for s in cfg.sources}
    for cond in cfg.conditions:
        if cond.id in skip:
            continue
        graph.setdefault(cond.left_source_id, []).append((cond.right_source_id, cond.id))
        graph.setdefault(cond.right_source_id, []).append((cond.left_source_id, cond.id))
    return graph


def find_cycle(graph: JoinGraph) -> Optional[List[str]]:
    """
    Depth-first search tracking the active recursion stack.

    An edge leading back to a node still on the stack closes a cycle; edges are
    tracked by condition id so that walking back over the edge just used is not
    mistaken for one, while two conditions between the same pair of sources are.

    Returns:
        The sources forming the cycle (first node repeated at the end), or None
    """
    visited = set()
    used_edges = set()

    def dfs(node: str, stack: List[str]) -> Optional[List[str]]:
        visited.add(node)
        stack.append(node)
        for neighbour, edge_id in graph.get(node, []):
            if edge_id in used_edges:
                continue
            used_edges.add(edge_id)
            if neighbour in stack:
                return stack[stack.index(neighbour):] + [neighbour]
            if neighbour not in visited:
                cycle = dfs(neighbour, stack)
                if cycle:
                    return cycle
        stack.pop()
        return None

    for node in graph:
        if node not in visited:
            cycle = dfs(node, [])
            if cycle:
                return cycle
    return None


def _plan(cfg: JoinConfiguration, errors: List[str]) -> List[JoinStage]:
    stages: List[JoinStage] = []
    joined: set = set()
    for i, cond in enumerate(cfg.conditions, start=1):
        if i == 1:
            stages.append(JoinStage(i, cond, cond.left_source_id, cond.left_field,
                                    cond.right_source_id, cond.right_field, cond.join_type))
            joined.update(cond.sources())
            continue

        left_in, right_in = cond.left_source_id in joined, cond.right_source_id in joined
        if left_in and not right_in:
            stages.append(JoinStage(i, cond, cond.left_source_id, cond.left_field,
                                    cond.right_source_id, cond.right_field, cond.join_type))
        elif right_in and not left_in:
            # Joined side always becomes the pseudo-left; mirror the join type to match
            stages.append(JoinStage(i, cond, cond.right_source_id, cond.right_field,
                                    cond.left_source_id, cond.left_field, _MIRRORED[cond.join_type]))
        elif not left_in and not right_in:
            errors.append(f"Condition '{cond.id}' ({cond.left_source_id} - {cond.right_source_id}) "
                          f"does not connect to any source joined by earlier conditions")
            continue
        joined.update(cond.sources())
    return stages


def validate_join_configuration(cfg: JoinConfiguration) -> List[JoinStage]:
    """
    Check a join configuration before any I/O and plan its stages.

    Raises:
        CyclicJoinError: The join graph contains a cycle
        ConfigurationError: Any other structural problem; all problems are reported together

    Returns:
        The executable join stages in configuration order
    """
    errors: List[str] = []
    source_ids = [s.id for s in cfg.sources]
    known = set(source_ids)

    duplicates = [sid for sid, n in Counter(source_ids).items() if n > 1]
    if duplicates:
        errors.append(f"Duplicate source ids: {sorted(duplicates)}")

    if not cfg.conditions:
        errors.append("At least one join condition is required")

    seen_conditions: Dict[frozenset, str] = {}
    duplicate_ids = set()
    for cond in cfg.conditions:
        for side, source_id in (('left', cond.left_source_id), ('right', cond.right_source_id)):
            if source_id not in known:
                errors.append(f"Condition '{cond.id}' references unknown {side} source '{source_id}'")
        if cond.left_source_id == cond.right_source_id:
            errors.append(f"Condition '{cond.id}' joins source '{cond.left_source_id}' to itself")
        signature = frozenset({(cond.left_source_id, cond.left_field), (cond.right_source_id, cond.right_field)})
        if signature in seen_conditions:
            errors.append(f"Condition '{cond.id}' duplicates condition '{seen_conditions[signature]}'")
            duplicate_ids.add(cond.id)
        else:
            seen_conditions[signature] = cond.id

    joined_sources = {sid for cond in cfg.conditions for sid in cond.sources()}
    included = cfg.included_fields
    if not included:
        errors.append("At least one consolidated field must be included in the output")
    for spec in cfg.consolidated_fields:
        if spec.source_id not in known:
            errors.append(f"Consolidated field '{spec.alias}' references unknown source '{spec.source_id}'")
        elif spec.include and spec.source_id not in joined_sources:
            errors.append(f"Consolidated field '{spec.alias}' references source '{spec.source_id}' "
                          f"which no join condition uses")

    unused = known - joined_sources
    if unused and cfg.conditions:
        logger.warning(f"Sources not used by any join condition: {sorted(unused)}")

    graph = build_join_graph(cfg, skip=frozenset(duplicate_ids))
    self_loops = any(c.left_source_id == c.right_source_id for c in cfg.conditions)
    cycle = None if self_loops else find_cycle(graph)
    if cycle:
        errors.append(f"Join graph contains a cycle: {' -> '.join(cycle)}")
        logger.error(f"Join configuration rejected, cyclic join graph: {cycle}")
        raise CyclicJoinError(cycle, errors)

    stages = _plan(cfg, errors) if cfg.conditions and not self_loops else []

    if errors:
        logger.error(f"Join configuration rejected with {len(errors)} error(s): {errors}")
        raise ConfigurationError(errors)

    logger.debug(f"Join configuration valid: {len(stages)} stage(s) over {len(joined_sources)} sources")
    return stages
