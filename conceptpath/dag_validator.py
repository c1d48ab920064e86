"""
DAG validation: cycle detection and graph metrics.

Uses ``networkx.DiGraph`` for cycle detection and topological-sort
validation. Cycles are reported, never repaired: a prerequisite cycle is
an authoring error that has to be fixed at the source.
"""

import logging
from typing import Any, Dict, List, Optional

import networkx as nx
import numpy as np

logger = logging.getLogger(__name__)


# =========================================================================
# Cycle detection
# =========================================================================


def find_cycle(graph: nx.DiGraph) -> Optional[List[str]]:
    """Return the nodes of one directed cycle in *graph*, or ``None``.

    The list is in edge order: ``[a, b, c]`` means ``a → b → c → a``.
    """
    try:
        cycle = nx.find_cycle(graph, orientation="original")
    except nx.NetworkXNoCycle:
        return None
    nodes = [u for u, _, _ in cycle]
    logger.debug("Cycle found: %s", " → ".join(nodes + nodes[:1]))
    return nodes


# =========================================================================
# Validation
# =========================================================================


def validate_dag(graph: nx.DiGraph) -> bool:
    """Verify that *graph* is a DAG (topological sort succeeds)."""
    try:
        list(nx.topological_sort(graph))
        return True
    except nx.NetworkXUnfeasible:
        return False


# =========================================================================
# Metrics
# =========================================================================


def compute_metrics(store) -> Dict[str, Any]:
    """Compute graph summary metrics for a ``ConceptGraphStore``.

    Returns dict with: total_concepts, total_edges, avg_out_degree,
    max_depth, isolated_nodes_count, root_concepts, fundamental_concepts,
    is_dag.
    """
    G = store.graph
    concepts = store.concepts()

    total_edges = G.number_of_edges()
    n_concepts = G.number_of_nodes()

    out_degrees = np.array([d for _, d in G.out_degree()], dtype=np.float64)
    avg_out = float(out_degrees.mean()) if n_concepts > 0 else 0.0

    # Isolated = concepts with no prerequisite and no dependent
    isolated_count = sum(1 for n in G.nodes if G.degree(n) == 0)
    roots = sum(1 for n in G.nodes if G.in_degree(n) == 0)

    is_dag = validate_dag(G)
    if total_edges > 0 and is_dag:
        max_depth = nx.dag_longest_path_length(G)
    else:
        max_depth = 0

    return {
        "total_concepts": n_concepts,
        "total_edges": total_edges,
        "avg_out_degree": round(avg_out, 4),
        "max_depth": max_depth,
        "isolated_nodes_count": isolated_count,
        "root_concepts": roots,
        "fundamental_concepts": sum(1 for c in concepts if c.is_fundamental),
        "is_dag": is_dag,
    }
