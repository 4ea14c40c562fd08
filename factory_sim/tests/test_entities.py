from datetime import datetime, time
import random

from factory_sim.sim.entities import BatteryStatus, HealthStatus, Position, RobotSchedule, RobotWorker


def test_health_level_classification():
    assert HealthStatus().level == "NORMAL"
    assert HealthStatus(heart_rate=110).level == "WARNING"
    assert HealthStatus(heart_rate=130).level == "DANGER"
    assert HealthStatus(oxygen_level=90).level == "DANGER"
    assert HealthStatus(fallen=True).level == "CRITICAL"
    assert HealthStatus(temperature=38.5).is_emergency
    assert not HealthStatus(stress_level=70).is_emergency


def test_health_profiles_are_seeded():
    a = HealthStatus.danger(random.Random(3))
    b = HealthStatus.danger(random.Random(3))
    assert a == b
    assert a.is_dangerous
    assert HealthStatus.fall(random.Random(1)).level == "CRITICAL"


def test_battery_drain_and_thresholds():
    battery = BatteryStatus(level=50.0)
    assert battery.drain("WORKING", 3600).level == 48.0
    assert battery.drain("IDLE", 1800).level == 49.5
    charged = BatteryStatus(level=95.0).drain("CHARGING", 3600)
    assert charged.level == 100.0
    assert charged.is_charging
    assert BatteryStatus(level=0.5).drain("WORKING", 3600).level == 0.0

    assert BatteryStatus(level=20.0).is_low
    assert not BatteryStatus(level=20.1).is_low
    assert BatteryStatus(level=10.0).is_critical
    assert not BatteryStatus(level=10.5).is_critical


def test_default_schedule_slots():
    schedule = RobotSchedule.default()
    assert schedule.state_at(time(8, 0)) == "WORKING"
    assert schedule.state_at(time(10, 0)) == "RESTING"
    assert schedule.state_at(time(10, 15)) == "WORKING"
    assert schedule.state_at(time(12, 30)) == "EATING"
    assert schedule.entry_at(time(12, 30)).zone_type == "CAFETERIA"
    assert schedule.state_at(time(17, 0)) is None
    assert schedule.state_at(time(7, 59)) is None


def test_state_change_keeps_target_only_for_travel():
    at = datetime(2024, 1, 1, 9, 0)
    robot = RobotWorker("R-1", "Worker-1", Position(1, 1), state="WORKING")
    moving = robot.heading_to(Position(5, 5), at=at)
    assert moving.state == "MOVING"
    assert moving.needs_to_move

    assert moving.with_state("EVACUATING").target == Position(5, 5)
    assert moving.with_state("WORKING").target is None
    assert moving.in_emergency().target is None
    assert robot.state == "WORKING"


def test_robot_flags():
    robot = RobotWorker("R-1", "Worker-1", Position(2, 3))
    assert not robot.is_online
    assert robot.has_reached_target
    assert robot.in_emergency().is_in_danger
    assert robot.with_health(HealthStatus(heart_rate=40)).is_in_danger


def test_position_helpers():
    a = Position(1, 1)
    assert a.manhattan(Position(4, 5)) == 7
    assert a.euclidean(Position(4, 5)) == 5.0
    assert a.is_adjacent_to(Position(1, 2))
    assert not a.is_adjacent_to(Position(2, 2))
    assert Position(0, 10).latitude() > Position(0, 0).latitude()
    assert Position(10, 0).longitude() > Position(0, 0).longitude()
