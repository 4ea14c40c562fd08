from __future__ import annotations

"""
File: factory_sim/sim/pathfinder.py
Purpose: Shortest walkable path search over a GridMap.
Key responsibilities:
- 4-connected A* with the Manhattan heuristic.
- Deterministic tie-breaking so identical inputs give identical paths.
- Reverse BFS distance fields for many robots heading to one cell.
"""

from collections import deque
import heapq
import itertools

from factory_sim.sim.entities import Position
from factory_sim.sim.grid import GridMap


def find_path(grid: GridMap, start: Position, goal: Position) -> list[Position]:
    """Return the cells from `start` (exclusive) to `goal` (inclusive), or [] if none."""
    if start == goal or not grid.is_walkable(goal):
        return []

    counter = itertools.count()
    # (f, h, insertion order) keeps pops stable among equal-cost frontier cells.
    openq: list[tuple[int, int, int, Position]] = []
    h0 = start.manhattan(goal)
    heapq.heappush(openq, (h0, h0, next(counter), start))
    g: dict[Position, int] = {start: 0}
    parent: dict[Position, Position | None] = {start: None}
    closed: set[Position] = set()

    while openq:
        _, _, _, cur = heapq.heappop(openq)
        if cur in closed:
            continue
        if cur == goal:
            path: list[Position] = []
            node: Position | None = cur
            while node is not None and node != start:
                path.append(node)
                node = parent[node]
            path.reverse()
            return path
        closed.add(cur)
        for nxt in grid.neighbours(cur):
            if nxt in closed:
                continue
            ng = g[cur] + 1
            if nxt not in g or ng < g[nxt]:
                g[nxt] = ng
                parent[nxt] = cur
                h = nxt.manhattan(goal)
                heapq.heappush(openq, (ng + h, h, next(counter), nxt))
    return []


def distance_field(grid: GridMap, goal: Position) -> dict[Position, int]:
    """Walking distance to `goal` for every cell that can reach it."""
    if not grid.is_walkable(goal):
        return {}
    field = {goal: 0}
    frontier = deque([goal])
    while frontier:
        cur = frontier.popleft()
        for nxt in grid.neighbours(cur):
            if nxt not in field:
                field[nxt] = field[cur] + 1
                frontier.append(nxt)
    return field


def descend(grid: GridMap, field: dict[Position, int], start: Position, steps: int) -> list[Position]:
    """Up to `steps` cells down `field` from `start`; [] when start is the goal or cut off."""
    remaining = field.get(start)
    path: list[Position] = []
    cur = start
    while remaining and len(path) < steps:
        # neighbours() order (E, W, S, N) decides between equally short branches
        cur = next(nxt for nxt in grid.neighbours(cur) if field.get(nxt) == remaining - 1)
        remaining -= 1
        path.append(cur)
    return path
