"""
Simulate a household meter publishing cumulative energy over MQTT.

Payload fields:
- energy (kWh, cumulative), power (W)

Example:
  python meter_simulator.py --broker 127.0.0.1 --topic electrocalc/meter --interval 5
  python meter_simulator.py --monthly-kwh 250 --speedup 3600
"""

import argparse
import json
import math
import random
import sys
import time
from typing import Optional

import paho.mqtt.client as mqtt

HOURS_PER_MONTH = 30 * 24


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MQTT meter simulator")
    parser.add_argument("--broker", default="localhost", help="MQTT broker host")
    parser.add_argument("--port", type=int, default=1883, help="MQTT broker port")
    parser.add_argument(
        "--topic", default="electrocalc/meter", help="MQTT topic readings are published to"
    )
    parser.add_argument(
        "--interval", type=float, default=5.0, help="Seconds between two readings"
    )
    parser.add_argument(
        "--start-energy", type=float, default=0.0, help="Counter value at start (kWh)"
    )
    parser.add_argument(
        "--monthly-kwh", type=float, default=250.0, help="Target consumption over 30 days (kWh)"
    )
    parser.add_argument(
        "--variance", type=float, default=0.3, help="Relative load noise (0-1)"
    )
    parser.add_argument(
        "--speedup", type=float, default=1.0, help="Simulated seconds per real second"
    )
    parser.add_argument(
        "--username", default=None, help="MQTT username (optional)"
    )
    parser.add_argument(
        "--password", default=None, help="MQTT password (optional)"
    )
    return parser


def connect_mqtt(host: str, port: int, username: Optional[str], password: Optional[str]) -> mqtt.Client:
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
    if username:
        client.username_pw_set(username, password)
    client.connect(host, port, 60)
    return client


def load_power_w(monthly_kwh: float, now: float, variance: float, rng=random) -> float:
    """Average load for the monthly target, shaped by a daily curve plus noise."""
    mean_w = monthly_kwh * 1000 / HOURS_PER_MONTH
    day_phase = (now % (24 * 3600)) / (24 * 3600) * 2 * math.pi
    diurnal = 0.25 * math.sin(day_phase - math.pi / 2) + 1.0  # [0.75 .. 1.25]
    noise = rng.uniform(-1.0, 1.0) * variance
    return max(0.0, mean_w * (diurnal + noise))


def next_reading(energy_kwh: float, power_w: float, dt_s: float) -> dict:
    """Advance the counter by power over dt: kWh += (W * s) / 3,600,000"""
    energy_kwh += (power_w * dt_s) / 3_600_000.0
    return {"energy": round(energy_kwh, 3), "power": round(power_w, 1)}


def simulate_loop(client, topic, interval_s, start_energy_kwh, monthly_kwh, variance, speedup):
    energy_kwh = start_energy_kwh
    last_ts = time.time()

    while True:
        now = time.time()
        dt = max(0.0, now - last_ts) * speedup
        last_ts = now

        power_w = load_power_w(monthly_kwh, now * speedup, variance)
        payload = next_reading(energy_kwh, power_w, dt)
        energy_kwh = payload["energy"]

        client.publish(topic, json.dumps(payload))
        print(f"[MQTT] Published to {topic}: {payload}")

        sleep_left = interval_s - (time.time() - now)
        if sleep_left > 0:
            time.sleep(sleep_left)


def main() -> int:
    args = build_parser().parse_args()

    try:
        client = connect_mqtt(args.broker, args.port, args.username, args.password)
    except Exception as e:
        print(f"Cannot connect to MQTT: {e}")
        return 1

    print(
        "Simulating: broker=%s port=%d topic=%s interval=%.1fs start_energy=%.3f kWh target=%.0f kWh/month"
        % (args.broker, args.port, args.topic, args.interval, args.start_energy, args.monthly_kwh)
    )

    try:
        simulate_loop(
            client=client,
            topic=args.topic,
            interval_s=args.interval,
            start_energy_kwh=args.start_energy,
            monthly_kwh=args.monthly_kwh,
            variance=args.variance,
            speedup=args.speedup,
        )
    except KeyboardInterrupt:
        print("Simulation stopped (Ctrl+C)")
    finally:
        client.disconnect()

    return 0


if __name__ == "__main__":
    sys.exit(main())
