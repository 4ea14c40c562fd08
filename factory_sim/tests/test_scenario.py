import pytest

from factory_sim.sim.errors import ConfigurationError
from factory_sim.sim.scenario import (
    BUILTIN_SCENARIOS,
    Scenario,
    TimelineEvent,
    builtin_scenario,
    load_scenario_file,
    parse_scenario_yaml,
    validate_config,
)

FIRE_DRILL = """
id: drill-1
name: fire_drill
description: Quarterly drill
robot_count: 12
duration_minutes: 10
events:
  - offset_seconds: 120
    type: EVACUATION_ORDER
    target_zone: ALL
  - offset_seconds: 0
    type: FIRE_DETECTED
    target_zone: ZONE-B
    description: Smoke in work area 2
config:
  seed: 11
  spawn_zones: [ZONE-B]
  site: north
"""


def test_parse_yaml_document():
    scenario = parse_scenario_yaml(FIRE_DRILL)
    assert scenario.name == "fire_drill"
    assert scenario.scenario_id == "drill-1"
    assert scenario.robot_count == 12
    assert scenario.duration_s == 600.0
    assert [event.event_type for event in scenario.events] == ["FIRE_DETECTED", "EVACUATION_ORDER"]
    assert scenario.config["seed"] == 11
    assert scenario.config["site"] == "north"


def test_document_defaults():
    scenario = parse_scenario_yaml("name: bare\n")
    assert scenario.robot_count == 100
    assert scenario.duration_s == 3600.0
    assert scenario.events == ()


@pytest.mark.parametrize(
    "text",
    [
        "name: [unclosed",
        "- just\n- a list\n",
        "description: missing name\n",
        "name: x\nevents:\n  - offset_seconds: 1\n    type: ALIENS\n",
        "name: x\nevents:\n  - offset_seconds: -5\n    type: FIRE_DETECTED\n",
        "name: x\nrobot_count: -1\n",
        "name: x\nconfig:\n  emergency_probability: 2\n",
        "name: x\nconfig:\n  start_time: noon\n",
    ],
)
def test_invalid_documents_raise_configuration_error(text):
    with pytest.raises(ConfigurationError):
        parse_scenario_yaml(text)


def test_timeline_is_stably_ordered():
    scenario = Scenario(
        name="ordered",
        events=(
            TimelineEvent(30.0, "CALL_EMERGENCY_SERVICES", description="late"),
            TimelineEvent(10.0, "FIRE_DETECTED", "ZONE-A", "first"),
            TimelineEvent(10.0, "EVACUATION_ORDER", "ZONE-A", "second"),
        ),
    )
    assert [event.description for event in scenario.events] == ["first", "second", "late"]


def test_scenario_validation():
    with pytest.raises(ConfigurationError):
        Scenario(name="x", duration_s=0)
    with pytest.raises(ConfigurationError):
        Scenario(name="x", events=(TimelineEvent(1.0, "METEOR"),))
    with pytest.raises(ConfigurationError):
        validate_config({"tick_seconds": 0})
    assert validate_config({"custom": 1}).model_extra == {"custom": 1}


def test_builtin_presets():
    assert sorted(BUILTIN_SCENARIOS) == ["daily_operation", "fire_emergency", "gas_leak", "load_test", "worker_fall"]
    fire = builtin_scenario("fire_emergency", robot_count=5)
    assert fire.robot_count == 5
    assert [(e.offset_s, e.event_type, e.target_zone) for e in fire.events] == [
        (0.0, "FIRE_DETECTED", "ZONE-C"),
        (60.0, "EVACUATION_ORDER", "ALL"),
        (300.0, "CALL_EMERGENCY_SERVICES", None),
    ]
    gas = builtin_scenario("gas_leak")
    assert [e.event_type for e in gas.events] == ["GAS_DETECTED", "EQUIPMENT_SHUTDOWN", "EVACUATION_ORDER"]
    assert builtin_scenario("load_test").robot_count == 1000
    assert builtin_scenario("daily_operation").duration_s == 8 * 3600.0
    with pytest.raises(ConfigurationError):
        builtin_scenario("alien_invasion")


def test_load_scenario_file(tmp_path):
    path = tmp_path / "drill.yaml"
    path.write_text(FIRE_DRILL, encoding="utf-8")
    assert load_scenario_file(path).name == "fire_drill"
    with pytest.raises(ConfigurationError):
        load_scenario_file(tmp_path / "missing.yaml")
