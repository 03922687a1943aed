"""Graph algorithms for dependency graph operations."""

import heapq
from collections import defaultdict, deque
from collections.abc import Callable, Collection, Hashable, Mapping


def topological_sort[T: Hashable](
    successors: Mapping[T, Collection[T]],
    rank: Callable[[T], int] | None = None,
) -> list[T]:
    """Sort a graph topologically (dependencies before dependents).

    Given a graph represented as a mapping from nodes to their successors
    (nodes that depend on them), return nodes in an order where each node
    appears before all nodes that depend on it.

    Args:
        successors: Mapping from node to collection of nodes that depend on it.
            An edge (a -> b) means "b depends on a".
        rank: Optional tie-breaker. Among nodes that are ready at the same
            time, the one with the smallest rank comes first. Without it,
            ready nodes are emitted in discovery order.

    Returns:
        List of nodes in topological order.

    Raises:
        ValueError: If the graph contains a cycle.

    Example:
        >>> # a -> b -> c means c depends on b, b depends on a
        >>> topological_sort({"a": ["b"], "b": ["c"], "c": []})
        ['a', 'b', 'c']
        >>> topological_sort({"x": [], "y": []}, rank={"x": 1, "y": 0}.__getitem__)
        ['y', 'x']

    """
    # Calculate in-degree for each node
    indegree: defaultdict[T, int] = defaultdict(int)
    for node, deps in successors.items():
        indegree[node] = indegree.get(node, 0)
        for dep in deps:
            indegree[dep] += 1

    order: list[T] = []
    ready = [node for node, deg in indegree.items() if deg == 0]

    if rank is None:
        queue = deque(ready)
        while queue:
            node = queue.popleft()
            order.append(node)
            for successor in successors.get(node, []):
                indegree[successor] -= 1
                if indegree[successor] == 0:
                    queue.append(successor)
    else:
        # Heap entries carry a sequence number so nodes never get compared.
        heap = [(rank(node), i, node) for i, node in enumerate(ready)]
        heapq.heapify(heap)
        seq = len(heap)
        while heap:
            _, _, node = heapq.heappop(heap)
            order.append(node)
            for successor in successors.get(node, []):
                indegree[successor] -= 1
                if indegree[successor] == 0:
                    heapq.heappush(heap, (rank(successor), seq, successor))
                    seq += 1

    if len(order) != len(indegree):
        msg = "Cycle detected in graph"
        raise ValueError(msg)

    return order
