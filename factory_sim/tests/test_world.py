from collections import Counter
from datetime import datetime
import random

import pytest

from factory_sim.sim.behavior import RobotBehaviorEngine
from factory_sim.sim.entities import Position, RobotWorker
from factory_sim.sim.errors import ConfigurationError
from factory_sim.sim.world import VirtualWorld, build_standard_factory


def _assert_occupancy_consistent(world: VirtualWorld) -> None:
    scanned = Counter(robot.zone_id for robot in world.robots() if robot.zone_id is not None)
    for zone_id, count in world.zone_occupancy().items():
        assert count == scanned.get(zone_id, 0), zone_id
    for robot in world.robots():
        assert robot.zone_id == world.find_zone_at_position(robot.position)


def test_spawn_is_seeded_and_round_robin():
    world_a = VirtualWorld(build_standard_factory())
    world_b = VirtualWorld(build_standard_factory())
    robots_a = world_a.spawn_robots(9, random.Random(42))
    robots_b = world_b.spawn_robots(9, random.Random(42))

    assert robots_a == robots_b
    assert [robot.robot_id for robot in robots_a][:2] == ["ROBOT-0001", "ROBOT-0002"]
    assert all(robot.state == "OFFLINE" for robot in robots_a)
    # Work areas are A, B and D; each receives three robots.
    assert Counter(robot.assigned_zone_id for robot in robots_a) == {"ZONE-A": 3, "ZONE-B": 3, "ZONE-D": 3}
    assert all(robot.zone_id == robot.assigned_zone_id for robot in robots_a)


def test_spawn_rejects_bad_input():
    world = VirtualWorld(build_standard_factory())
    with pytest.raises(ValueError):
        world.spawn_robots(-1, random.Random(1))
    with pytest.raises(ConfigurationError):
        world.spawn_robots(1, random.Random(1), spawn_zones=["ZONE-NOPE"])


def test_duplicate_robot_rejected_and_unknown_put_raises():
    world = VirtualWorld(build_standard_factory())
    robot = RobotWorker("R-1", "Worker-1", Position(10, 10))
    world.add_robot(robot)
    with pytest.raises(ConfigurationError):
        world.add_robot(robot)
    with pytest.raises(KeyError):
        world.put_robot(RobotWorker("R-2", "Worker-2", Position(10, 10)))


def test_occupancy_follows_moves():
    world = VirtualWorld(build_standard_factory())
    world.add_robot(RobotWorker("R-1", "Worker-1", Position(10, 10)))
    assert world.occupancy_of("ZONE-A") == 1

    assert world.update_robot_position("R-1", Position(10, 25)) == "ZONE-CORRIDOR"
    assert world.occupancy_of("ZONE-A") == 0
    assert world.occupancy_of("ZONE-CORRIDOR") == 1

    assert world.update_robot_position("R-1", Position(27, 25)) == "ZONE-CORRIDOR"
    assert world.update_robot_position("R-1", Position(27, 21)) is None
    assert world.occupancy_of("ZONE-CORRIDOR") == 0

    world.put_robot(world.get_robot("R-1").moved_to(Position(84, 37), "WRONG"))
    assert world.get_robot("R-1").zone_id == "ZONE-H"
    assert world.evacuated_count() == 1
    _assert_occupancy_consistent(world)

    world.remove_robot("R-1")
    assert world.occupancy_of("ZONE-H") == 0


def test_occupancy_consistent_after_many_ticks():
    world = VirtualWorld(build_standard_factory(), datetime(2024, 1, 1, 11, 55))
    behavior = RobotBehaviorEngine(world, seed=3, work_move_probability=0.5)
    for robot in world.spawn_robots(40, random.Random(3)):
        world.put_robot(robot.with_state("WORKING"))
    for _ in range(400):
        now = world.advance_clock(1.0)
        for robot in [behavior.tick(robot, now) for robot in world.robots()]:
            world.put_robot(robot)
    _assert_occupancy_consistent(world)
    assert sum(world.zone_occupancy().values()) <= 40


def test_nearest_zone_and_assembly_point():
    world = VirtualWorld(build_standard_factory())
    assert world.find_nearest_zone(Position(10, 10), "WORK_AREA").zone_id == "ZONE-A"
    assert world.find_nearest_zone(Position(90, 10), "WORK_AREA").zone_id == "ZONE-D"
    assert world.find_nearest_zone(Position(10, 10), "CAFETERIA").zone_id == "ZONE-F"
    assert world.find_nearest_zone(Position(10, 10), "CHARGING_STATION") is None
    assert world.require_assembly_point().zone_id == "ZONE-H"


def test_emergency_flags():
    world = VirtualWorld(build_standard_factory())
    assert world.is_zone_hazardous("ZONE-C")
    assert not world.is_zone_hazardous("ZONE-A")

    world.trigger_emergency("ZONE-A")
    world.shutdown_equipment("ZONE-A")
    assert world.emergency_active
    assert world.emergency_zone_ids() == ["ZONE-A"]
    assert world.is_zone_hazardous("ZONE-A")
    assert world.is_equipment_shutdown("ZONE-A")
    with pytest.raises(ConfigurationError):
        world.trigger_emergency("ZONE-NOPE")

    world.clear_emergency()
    assert not world.emergency_active
    assert not world.is_zone_hazardous("ZONE-A")
    assert not world.is_equipment_shutdown("ZONE-A")


def test_reset_clears_registry_and_clock():
    world = VirtualWorld(build_standard_factory())
    world.spawn_robots(5, random.Random(1))
    world.trigger_emergency()
    world.advance_clock(90)
    world.reset(datetime(2024, 1, 1, 12, 0))
    assert world.robots() == []
    assert sum(world.zone_occupancy().values()) == 0
    assert not world.emergency_active
    assert world.clock == datetime(2024, 1, 1, 12, 0)
    snapshot = world.snapshot()
    assert snapshot["robot_count"] == 0
    assert snapshot["clock"] == "2024-01-01T12:00:00"


def test_distance_field_is_built_once_per_target():
    world = VirtualWorld(build_standard_factory())
    target = world.require_assembly_point().center()
    field = world.distance_field_to(target)
    assert world.distance_field_to(target) is field
    assert field[target] == 0
    assert field[Position(10, 10)] == len(world.find_path(Position(10, 10), target))
