# config.py
"""
Configuration & helpers for MQTT and InfluxDB
"""

import logging
import os
import time
from datetime import datetime, timezone, timedelta

import paho.mqtt.client as mqtt
from dotenv import load_dotenv
from influxdb_client import InfluxDBClient as InfluxDBClientV2, Point
from influxdb_client.client.write_api import SYNCHRONOUS

load_dotenv()

logger = logging.getLogger(__name__)

# ==========================
# CONFIGURATION
# ==========================

# Billing Configuration
DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "radeef")
HISTORY_BACKEND = os.getenv("HISTORY_BACKEND", "memory")  # "memory" | "influx"
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", 12))       # last 12 months kept

# Time Configuration
TIMEZONE_MOROCCO = timezone(timedelta(hours=1))  # Africa/Casablanca (UTC+1)
BILLING_CHECK_TIME = os.getenv("BILLING_CHECK_TIME", "00:00")  # HH:MM (24h)
MONTH_START_DAY = int(os.getenv("MONTH_START_DAY", 1))

# MQTT Configuration
MQTT_BROKER = os.getenv("MQTT_BROKER", "localhost")
MQTT_PORT = int(os.getenv("MQTT_PORT", 1883))
MQTT_USER = os.getenv("MQTT_USER", "")
MQTT_PASS = os.getenv("MQTT_PASS", "")
MQTT_TOPICS = os.getenv("MQTT_TOPICS", "electrocalc/meter").split(",")

# InfluxDB Configuration (v2 only)
INFLUX_HOST = os.getenv("INFLUX_HOST", "localhost")
INFLUX_PORT = int(os.getenv("INFLUX_PORT", 8086))
INFLUX_TOKEN = os.getenv("INFLUX_TOKEN")
INFLUX_ORG = os.getenv("INFLUX_ORG")
INFLUX_BUCKET = os.getenv("INFLUX_BUCKET", "electrocalc")

# ==========================
# INFLUXDB FUNCTIONS
# ==========================

def init_influx(max_retries=3):
    """Create the InfluxDB client, retrying with exponential backoff"""
    if not INFLUX_TOKEN:
        raise RuntimeError("INFLUX_TOKEN is not configured for InfluxDB v2")

    url = f"http://{INFLUX_HOST}:{INFLUX_PORT}"

    for attempt in range(max_retries):
        try:
            client = InfluxDBClientV2(url=url, token=INFLUX_TOKEN, org=INFLUX_ORG)
            client.ping()
            return client
        except Exception as e:
            if attempt < max_retries - 1:
                wait_time = 2 ** attempt  # 1s, 2s, 4s
                logger.warning(f"InfluxDB connection failed (attempt {attempt + 1}/{max_retries}): {e}")
                logger.warning(f"Retrying in {wait_time} seconds...")
                time.sleep(wait_time)
            else:
                raise RuntimeError(f"Failed to connect to InfluxDB after {max_retries} attempts: {e}") from e


def write_influx(client, measurement, fields, tags=None, timestamp=None, max_retries=2):
    """
    Write one point to InfluxDB, retrying on failure
    Args:
        client: InfluxDBClient
        measurement (str): measurement name
        fields (dict): values to write { "monthly_kwh": 182.0, "monthly_cost": 204.5 }
        tags (dict): tags for the point (e.g. {"provider": "RADEEF"})
        timestamp (datetime): point time, now in Morocco time when omitted
        max_retries (int): max number of retries

    Returns:
        bool: True when the point was written
    """
    for attempt in range(max_retries + 1):
        try:
            write_api = client.write_api(write_options=SYNCHRONOUS)
            p = Point(measurement)
            for k, v in (tags or {}).items():
                p = p.tag(k, str(v))
            for k, v in fields.items():
                p = p.field(k, v)
            p = p.time(timestamp or datetime.now(TIMEZONE_MOROCCO))
            write_api.write(bucket=INFLUX_BUCKET, org=INFLUX_ORG, record=p)
            return True
        except Exception as e:
            if attempt < max_retries:
                wait_time = 0.5 * (2 ** attempt)  # 0.5s, 1s
                logger.warning(f"InfluxDB write failed (attempt {attempt + 1}/{max_retries + 1}): {e}")
                time.sleep(wait_time)
            else:
                # Keep the processor running, the point is dropped
                logger.error(f"Failed to write to InfluxDB after {max_retries + 1} attempts: {e}")
    return False

# ==========================
# MQTT FUNCTIONS
# ==========================

def init_mqtt(on_message_callback):
    """
    Create the MQTT client
    Args:
        on_message_callback: called for every message received
    """
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
    if MQTT_USER:
        client.username_pw_set(MQTT_USER, MQTT_PASS)
    client.on_connect = lambda c, u, f, rc, props: c.subscribe([(topic, 0) for topic in MQTT_TOPICS])
    client.on_message = on_message_callback
    client.connect(MQTT_BROKER, MQTT_PORT, 60)
    return client
