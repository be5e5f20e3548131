from __future__ import annotations

from collections.abc import Iterable, Sequence
from functools import lru_cache
from typing import List, Set, Tuple

from domain.models import FlowEdge, Notice, resolve_screen_reference
from domain.services.markup_scan import flow_elements


def extract_flows(screen_id: str, body: str) -> List[FlowEdge]:
    return list(_extract_flows_cached(screen_id, body))


@lru_cache(maxsize=512)
def _extract_flows_cached(screen_id: str, body: str) -> Tuple[FlowEdge, ...]:
    edges: List[FlowEdge] = []
    for element in flow_elements(body):
        if not element.target:
            continue
        edges.append(
            FlowEdge(
                from_screen_id=screen_id,
                to_screen_id=resolve_screen_reference(element.target),
                element_descriptor=element.descriptor,
                element_index=element.index,
            )
        )
    return tuple(edges)


def validate_flows(
    edges: Iterable[FlowEdge], known_ids: Set[str]
) -> Tuple[List[FlowEdge], List[Notice]]:
    kept: List[FlowEdge] = []
    notices: List[Notice] = []
    for edge in edges:
        if edge.to_screen_id in known_ids:
            kept.append(edge)
            continue
        notices.append(
            Notice(
                kind="dangling_flow_target",
                message=(
                    f"Flow from '{edge.from_screen_id}' targets unknown screen "
                    f"'{edge.to_screen_id}'"
                ),
                screen_id=edge.from_screen_id,
                detail={
                    "to_screen_id": edge.to_screen_id,
                    "element_index": edge.element_index,
                    "element_descriptor": edge.element_descriptor,
                },
            )
        )
    return kept, notices


def group_by_source(edges: Sequence[FlowEdge]) -> dict[str, List[FlowEdge]]:
    grouped: dict[str, List[FlowEdge]] = {}
    for edge in edges:
        grouped.setdefault(edge.from_screen_id, []).append(edge)
    return grouped
