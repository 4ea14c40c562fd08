from collections import deque
import random

import pytest

from factory_sim.sim.entities import Position
from factory_sim.sim.errors import ConfigurationError
from factory_sim.sim.grid import GridMap, Zone
from factory_sim.sim.pathfinder import descend, distance_field, find_path
from factory_sim.sim.world import build_standard_factory


def _bfs_length(grid: GridMap, start: Position, goal: Position):
    seen = {start}
    queue = deque([(start, 0)])
    while queue:
        cur, dist = queue.popleft()
        if cur == goal:
            return dist
        for nxt in grid.neighbours(cur):
            if nxt not in seen:
                seen.add(nxt)
                queue.append((nxt, dist + 1))
    return None


def _random_grid(seed: int, size: int = 12) -> GridMap:
    rng = random.Random(seed)
    grid = GridMap(size, size)
    grid.outer_walls()
    for y in range(1, size - 1):
        for x in range(1, size - 1):
            if rng.random() < 0.25:
                grid.set_cell(Position(x, y), "OBSTACLE")
    return grid


def test_path_to_self_is_empty():
    grid = build_standard_factory()
    assert find_path(grid, Position(10, 10), Position(10, 10)) == []


def test_path_to_wall_is_empty():
    grid = build_standard_factory()
    assert find_path(grid, Position(10, 10), Position(0, 0)) == []


def test_astar_matches_bfs_on_random_grids():
    for seed in range(8):
        grid = _random_grid(seed)
        rng = random.Random(100 + seed)
        cells = [Position(x, y) for y in range(grid.height) for x in range(grid.width) if grid.is_walkable(Position(x, y))]
        for _ in range(15):
            start, goal = rng.choice(cells), rng.choice(cells)
            expected = _bfs_length(grid, start, goal)
            path = find_path(grid, start, goal)
            if start == goal:
                assert path == []
            elif expected is None:
                assert path == []
            else:
                assert len(path) == expected
                assert path[-1] == goal


def test_path_is_contiguous_and_walkable():
    grid = build_standard_factory()
    start, goal = Position(10, 10), Position(84, 37)
    path = find_path(grid, start, goal)
    assert len(path) == start.manhattan(goal)
    prev = start
    for cell in path:
        assert prev.is_adjacent_to(cell)
        assert grid.is_walkable(cell)
        prev = cell
    assert find_path(grid, start, goal) == path


def test_path_goes_around_walls():
    grid = GridMap(7, 5)
    grid.outer_walls()
    grid.vertical_wall(3, 0, 2)
    path = find_path(grid, Position(1, 1), Position(5, 1))
    assert len(path) == 8
    assert Position(3, 3) in path


def test_zone_registry_rejects_bad_zones():
    grid = GridMap(20, 20)
    grid.add_zone(Zone("Z1", "One", "WORK_AREA", Position(1, 1), Position(5, 5)))
    with pytest.raises(ConfigurationError):
        grid.add_zone(Zone("Z2", "Two", "WORK_AREA", Position(5, 5), Position(8, 8)))
    with pytest.raises(ConfigurationError):
        grid.add_zone(Zone("Z1", "Again", "REST_AREA", Position(10, 10), Position(12, 12)))
    with pytest.raises(ConfigurationError):
        grid.add_zone(Zone("Z3", "Outside", "WORK_AREA", Position(15, 15), Position(25, 25)))
    with pytest.raises(ConfigurationError):
        Zone("Z4", "Bad", "NOT_A_TYPE", Position(1, 1), Position(2, 2))
    with pytest.raises(ConfigurationError):
        Zone("Z5", "Inverted", "WORK_AREA", Position(5, 5), Position(1, 1))

    assert grid.zone_id_at(Position(3, 3)) == "Z1"
    assert grid.zone_id_at(Position(6, 6)) is None


def test_standard_factory_layout():
    grid = build_standard_factory()
    assert [zone.zone_id for zone in grid.zones()] == [
        "ZONE-A",
        "ZONE-B",
        "ZONE-C",
        "ZONE-CORRIDOR",
        "ZONE-D",
        "ZONE-E",
        "ZONE-F",
        "ZONE-G",
        "ZONE-H",
    ]
    assert grid.cell(Position(0, 0)) == "WALL"
    assert grid.cell(Position(-1, 5)) == "WALL"
    assert grid.cell(Position(60, 10)) == "DANGER"
    assert grid.is_walkable(Position(60, 10))

    rows = grid.to_ascii().split("\n")
    assert len(rows) == 50
    assert all(len(row) == 100 for row in rows)
    assert rows[0] == "#" * 100
    assert rows[10][60] == "!"


def test_standard_factory_needs_minimum_size():
    with pytest.raises(ConfigurationError):
        build_standard_factory(50, 50)


def test_distance_field_matches_bfs():
    for seed in range(10):
        grid = _random_grid(seed)
        goal = Position(6, 6)
        grid.set_cell(goal, "FLOOR")
        field = distance_field(grid, goal)
        for y in range(grid.height):
            for x in range(grid.width):
                cell = Position(x, y)
                if grid.is_walkable(cell):
                    assert field.get(cell) == _bfs_length(grid, cell, goal)
                else:
                    assert cell not in field


def test_descend_walks_a_shortest_route():
    grid = build_standard_factory()
    goal = Position(84, 37)
    field = distance_field(grid, goal)
    start = Position(10, 10)

    steps = descend(grid, field, start, 2)
    assert len(steps) == 2
    assert start.manhattan(steps[0]) == 1 and steps[0].manhattan(steps[1]) == 1
    assert field[steps[1]] == field[start] - 2

    full = descend(grid, field, start, 10_000)
    assert full[-1] == goal
    assert len(full) == len(find_path(grid, start, goal))
    assert descend(grid, field, goal, 2) == []
    assert descend(grid, distance_field(grid, Position(0, 0)), start, 2) == []
