from __future__ import annotations

"""
File: factory_sim/sim/sensors.py
Purpose: Synthetic wearable and environment sensor readings.
Key responsibilities:
- State-dependent heart rate, body temperature and accelerometer samples.
- Hazardous/normal environment profiles with the hazard classifier.
- Auxiliary channels (PPG, current draw, distance, PIR motion).
"""

from dataclasses import dataclass
import math
import random

from factory_sim.sim.entities import RobotState


FALL_MAGNITUDE_G = 0.5

HEART_RATE_BASE: dict[str, int] = {
    "WORKING": 85,
    "MOVING": 100,
    "EVACUATING": 100,
    "RESTING": 70,
    "EATING": 70,
    "IDLE": 70,
    "EMERGENCY": 130,
    "CHARGING": 65,
}
BODY_TEMPERATURE_BASE: dict[str, float] = {"WORKING": 36.8, "MOVING": 36.8, "EMERGENCY": 37.5}
DEFAULT_BODY_TEMPERATURE = 36.5


@dataclass(frozen=True)
class AccelerometerReading:
    """Acceleration vector in g."""
    x: float
    y: float
    z: float

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    @property
    def is_fall_detected(self) -> bool:
        """Free fall: total acceleration under 0.5 g."""
        return self.magnitude < FALL_MAGNITUDE_G


@dataclass(frozen=True)
class EnvironmentReading:
    temperature: float
    humidity: float
    co2_ppm: float
    smoke_detected: bool
    gas_level: float

    @property
    def is_hazardous(self) -> bool:
        return self.temperature > 40 or self.co2_ppm > 2000 or self.smoke_detected or self.gas_level > 20


class SensorDataGenerator:
    """Seeded bank of synthetic sensor channels."""
    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def reseed(self, seed: int | str) -> None:
        self.rng = random.Random(f"sensors:{seed}")

    def heart_rate(self, state: RobotState) -> int:
        return HEART_RATE_BASE.get(state, 70) + self.rng.randint(-10, 10)

    def body_temperature(self, state: RobotState) -> float:
        base = BODY_TEMPERATURE_BASE.get(state, DEFAULT_BODY_TEMPERATURE)
        return round(base + self.rng.uniform(-0.3, 0.3), 2)

    def accelerometer(self, state: RobotState) -> AccelerometerReading:
        rng = self.rng
        if state in ("MOVING", "EVACUATING"):
            return AccelerometerReading(rng.random() * 0.5, rng.random() * 0.5, 1.0 + rng.random() * 0.2)
        if state == "EMERGENCY":
            # Low z with random lateral spikes; occasionally drops under the fall threshold.
            return AccelerometerReading(rng.random() * 2.0, rng.random() * 2.0, rng.random() * 0.5)
        return AccelerometerReading(rng.random() * 0.1, rng.random() * 0.1, 1.0 + rng.random() * 0.05)

    def environment(self, hazardous: bool) -> EnvironmentReading:
        rng = self.rng
        if hazardous:
            return EnvironmentReading(
                temperature=round(45 + rng.random() * 20, 2),
                humidity=round(20 + rng.random() * 20, 2),
                co2_ppm=float(2000 + rng.randrange(3000)),
                smoke_detected=rng.random() < 0.7,
                gas_level=round(rng.random() * 100, 2),
            )
        return EnvironmentReading(
            temperature=round(22 + rng.random() * 5, 2),
            humidity=round(40 + rng.random() * 30, 2),
            co2_ppm=float(400 + rng.randrange(400)),
            smoke_detected=False,
            gas_level=round(rng.random() * 5, 2),
        )

    def ppg_signal(self, samples: int = 100) -> list[int]:
        """12-bit photoplethysmography waveform sampled at 100 Hz (about 72 bpm)."""
        if samples < 0:
            raise ValueError(f"invalid sample count: {samples}")
        signal: list[int] = []
        for i in range(samples):
            t = i * 0.01
            beat = math.sin(2 * math.pi * 1.2 * t)
            noise = self.rng.gauss(0.0, 0.05)
            signal.append(max(0, min(4095, int((beat + noise + 1) * 2048))))
        return signal

    def current_draw_ma(self, abnormal: bool = False) -> float:
        if abnormal:
            return round(2000 + self.rng.random() * 3000, 2)
        return round(500 + self.rng.random() * 500, 2)

    def distance_cm(self) -> int:
        return 50 + self.rng.randrange(450)

    def pir_motion(self, motion_present: bool) -> bool:
        """95% detection when someone is there, 2% false positives otherwise."""
        if motion_present:
            return self.rng.random() > 0.05
        return self.rng.random() < 0.02
