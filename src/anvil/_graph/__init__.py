"""Graph module providing dependency graph abstractions.

This module contains:
- DependencyGraph: A mutable directed acyclic graph of variable dependencies
- Edge: A dependency edge carrying its reaction policy
- topological_sort: Algorithm for ordering nodes by dependencies
"""

from ._algorithms import topological_sort
from ._dependency_graph import DependencyGraph, Edge, GateState

__all__ = ["DependencyGraph", "Edge", "GateState", "topological_sort"]
