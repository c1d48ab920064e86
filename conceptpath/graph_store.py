"""
Read-only concept graph snapshot.

Concepts are nodes of a ``networkx.DiGraph`` keyed by concept id; an edge
``p → c`` means *p* is a prerequisite of *c*. The store is built once per
request and never mutated afterwards, so it can be shared between callers
without locking.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

import networkx as nx

from conceptpath.dag_validator import find_cycle
from conceptpath.models import Concept
from conceptpath.result import NotFound, Ok

logger = logging.getLogger(__name__)


class ConceptGraphStore:
    """Id-keyed adjacency view over concepts and their prerequisite edges."""

    def __init__(self, graph: nx.DiGraph, concepts: Dict[str, Concept]):
        self._graph = graph
        self._concepts = concepts

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, concepts: Iterable[Concept]):
        """Build a store from concept records.

        Returns:
            ``Ok(store)``, or ``NotFound`` if a concept lists a prerequisite
            id that is not part of the snapshot.
        """
        by_id: Dict[str, Concept] = {}
        for concept in concepts:
            if concept.id in by_id:
                logger.warning("Duplicate concept id %r — keeping the last one.", concept.id)
            by_id[concept.id] = concept

        graph = nx.DiGraph()
        graph.add_nodes_from(by_id)
        for concept in by_id.values():
            for prereq_id in concept.prerequisites:
                if prereq_id not in by_id:
                    return NotFound(
                        kind="concept",
                        ref=prereq_id,
                        message=(
                            f"Concept '{concept.id}' lists unknown "
                            f"prerequisite '{prereq_id}'"
                        ),
                    )
                graph.add_edge(prereq_id, concept.id)

        logger.debug(
            "Concept graph built: %d concepts, %d edges.",
            graph.number_of_nodes(), graph.number_of_edges(),
        )
        return Ok(cls(graph, by_id))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __contains__(self, concept_id: object) -> bool:
        return concept_id in self._concepts

    def __len__(self) -> int:
        return len(self._concepts)

    @property
    def graph(self) -> nx.DiGraph:
        """Read-only view of the underlying graph."""
        return self._graph.copy(as_view=True)

    def concepts(self) -> List[Concept]:
        """All concepts, ordered by id."""
        return [self._concepts[cid] for cid in sorted(self._concepts)]

    def get_concept(self, concept_id: str):
        concept = self._concepts.get(concept_id)
        if concept is None:
            return NotFound(kind="concept", ref=concept_id)
        return Ok(concept)

    def get_prerequisites(self, concept_id: str) -> List[str]:
        """Direct prerequisites in authored order (empty if none or unknown)."""
        concept = self._concepts.get(concept_id)
        if concept is None:
            return []
        return list(concept.prerequisites)

    def get_dependents(self, concept_id: str) -> List[str]:
        """Concepts that list *concept_id* as a direct prerequisite."""
        if concept_id not in self._graph:
            return []
        return sorted(self._graph.successors(concept_id))

    def ancestors_of(self, goal_ids: Iterable[str]):
        """Every concept transitively required to reach any of *goal_ids*.

        The goals themselves are not included unless one goal is an
        ancestor of another.
        """
        ancestors: Set[str] = set()
        for goal_id in goal_ids:
            if goal_id not in self._graph:
                return NotFound(kind="concept", ref=goal_id)
            ancestors |= nx.ancestors(self._graph, goal_id)
        return Ok(ancestors)

    def find_cycle(self, scope: Optional[Iterable[str]] = None) -> Optional[List[str]]:
        """Return one prerequisite cycle (as a node list) within *scope*, or ``None``."""
        graph = self._graph if scope is None else self._graph.subgraph(scope)
        return find_cycle(graph)

    def subgraph(self, scope: Iterable[str]) -> nx.DiGraph:
        """Induced subgraph on *scope* (unknown ids are ignored)."""
        return self._graph.subgraph(scope)
