import random

from factory_sim.sim.sensors import AccelerometerReading, EnvironmentReading, SensorDataGenerator


def _env(**overrides):
    values = {"temperature": 25.0, "humidity": 50.0, "co2_ppm": 500.0, "smoke_detected": False, "gas_level": 1.0}
    values.update(overrides)
    return EnvironmentReading(**values)


def test_fall_detection_boundary():
    assert not AccelerometerReading(0.5, 0.0, 0.0).is_fall_detected
    assert AccelerometerReading(0.499999, 0.0, 0.0).is_fall_detected
    assert not AccelerometerReading(0.0, 0.0, 1.0).is_fall_detected


def test_environment_hazard_boundaries():
    assert not _env().is_hazardous
    assert not _env(temperature=40.0).is_hazardous
    assert _env(temperature=40.001).is_hazardous
    assert not _env(co2_ppm=2000.0).is_hazardous
    assert _env(co2_ppm=2001.0).is_hazardous
    assert _env(smoke_detected=True).is_hazardous
    assert not _env(gas_level=20.0).is_hazardous
    assert _env(gas_level=20.001).is_hazardous


def test_generated_environment_profiles():
    sensors = SensorDataGenerator(random.Random(5))
    for _ in range(50):
        assert sensors.environment(hazardous=True).is_hazardous
        assert not sensors.environment(hazardous=False).is_hazardous


def test_reseed_reproduces_readings():
    a = SensorDataGenerator()
    b = SensorDataGenerator()
    a.reseed(9)
    b.reseed(9)
    assert a.ppg_signal(50) == b.ppg_signal(50)
    assert a.heart_rate("WORKING") == b.heart_rate("WORKING")
    assert a.accelerometer("EMERGENCY") == b.accelerometer("EMERGENCY")


def test_channel_ranges():
    sensors = SensorDataGenerator(random.Random(1))
    for _ in range(100):
        assert 75 <= sensors.heart_rate("WORKING") <= 95
        assert 120 <= sensors.heart_rate("EMERGENCY") <= 140
        assert 36.2 <= sensors.body_temperature("IDLE") <= 36.8
        assert 50 <= sensors.distance_cm() < 500
        assert 500 <= sensors.current_draw_ma() <= 1000
        assert sensors.current_draw_ma(abnormal=True) >= 2000
        assert not sensors.accelerometer("WORKING").is_fall_detected
    signal = sensors.ppg_signal()
    assert len(signal) == 100
    assert all(0 <= sample <= 4095 for sample in signal)
