# processor.py
"""
Reads cumulative meter energy from MQTT, keeps a running estimate of the
month's bill in InfluxDB and closes every month into the bill history
"""

import json
import logging
import time
from datetime import datetime
from typing import Dict, Optional

import schedule

from config import (
    BILLING_CHECK_TIME,
    INFLUX_BUCKET,
    INFLUX_ORG,
    MONTH_START_DAY,
    TIMEZONE_MOROCCO,
    init_influx,
    init_mqtt,
    write_influx,
)
from errors import TariffError
from history import BillHistory, HistoryEntry
from pricing import BillBreakdown, calculate_bill
from reports import billable_kwh
from tariffs import TariffTable

logger = logging.getLogger(__name__)


class BillingProcessor:
    def __init__(self, table: TariffTable, history: BillHistory, influx_client=None):
        """Connect to InfluxDB (unless a client is given) and restore the monthly baseline"""
        self.table = table
        self.history = history
        self.influx_client = influx_client if influx_client is not None else init_influx()
        logger.info("InfluxDB client ready")

        self.last_energy_reading = None
        self.monthly_start_energy = None
        self.current_bill: Optional[BillBreakdown] = None

        # Health monitoring
        self.last_data_time = None
        self.mqtt_connected = False

        self._initialize_energy_baseline()

        # Daily job at BILLING_CHECK_TIME, closes the month on MONTH_START_DAY
        self.scheduler = schedule.Scheduler()
        self.scheduler.every().day.at(BILLING_CHECK_TIME).do(self._billing_job)

        logger.info(f"BillingProcessor initialized for {table.provider}")

    # ==========================
    # BASELINE
    # ==========================

    def _initialize_energy_baseline(self):
        """Restore the latest meter energy and the month-start energy from InfluxDB"""
        try:
            query_api = self.influx_client.query_api()
            now = datetime.now(TIMEZONE_MOROCCO)
            month_start = now.replace(day=MONTH_START_DAY, hour=0, minute=0, second=0, microsecond=0)

            self.last_energy_reading = self._query_energy(query_api, "-45d", "last()")
            self.monthly_start_energy = self._query_energy(
                query_api, month_start.strftime('%Y-%m-%dT%H:%M:%SZ'), "first()"
            )

            if self.monthly_start_energy is None or self.last_energy_reading is None:
                logger.warning("No month-start reading found, using the latest energy as baseline")
                self.monthly_start_energy = self.last_energy_reading
            elif self.monthly_start_energy > self.last_energy_reading:
                logger.warning(
                    f"Month baseline ({self.monthly_start_energy}) > current energy ({self.last_energy_reading}), "
                    f"adjusting to {self.last_energy_reading}"
                )
                self.monthly_start_energy = self.last_energy_reading

            logger.info(f"Baseline restored: energy={self.last_energy_reading} kWh, month start={self.monthly_start_energy} kWh")
        except Exception as e:
            logger.error(f"Could not restore energy baseline: {e}")
            self.last_energy_reading = None
            self.monthly_start_energy = None

    def _query_energy(self, query_api, start, selector):
        flux = f"""
from(bucket: "{INFLUX_BUCKET}")
  |> range(start: {start})
  |> filter(fn: (r) => r["_measurement"] == "data")
  |> filter(fn: (r) => r["_field"] == "energy")
  |> {selector}
"""
        tables = query_api.query(flux, org=INFLUX_ORG)
        for table in tables:
            for record in table.records:
                return float(record.get_value())
        return None

    def monthly_consumption(self) -> float:
        if self.last_energy_reading is None or self.monthly_start_energy is None:
            return 0.0
        return max(0.0, self.last_energy_reading - self.monthly_start_energy)

    # ==========================
    # READINGS
    # ==========================

    def process_mqtt_message(self, client, userdata, message):
        """Handle one MQTT message from the meter"""
        try:
            payload = message.payload.decode('utf-8')
            logger.debug(f"Received from {message.topic}: {payload}")
            data = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Unreadable payload on {message.topic}: {e}")
            return

        if not isinstance(data, dict) or "energy" not in data:
            logger.warning(f"Reading without energy: {data}")
            return
        self.process_reading(data)

    def process_reading(self, data: Dict, timestamp: Optional[datetime] = None) -> Optional[BillBreakdown]:
        """Update the month's consumption from a cumulative energy reading and re-price it"""
        try:
            energy = float(data["energy"])
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid reading {data}: {e}")
            return None
        try:
            power = float(data.get("power") or 0)
        except (TypeError, ValueError):
            logger.warning(f"Invalid power {data.get('power')!r}, recorded as 0")
            power = 0.0

        if energy < 0:
            logger.warning(f"Negative energy: {energy} kWh, reading ignored")
            return None

        timestamp = timestamp or datetime.now(TIMEZONE_MOROCCO)
        self._detect_meter_reset(energy, timestamp)

        if self.monthly_start_energy is None:
            self.monthly_start_energy = energy
            logger.info(f"Monthly baseline set from first reading: {energy} kWh")
        self.last_energy_reading = energy
        self.last_data_time = timestamp

        monthly_kwh = self.monthly_consumption()
        fields = {"energy": energy, "power": power, "monthly_kwh": monthly_kwh}

        bill = None
        if billable_kwh(monthly_kwh) > 0:
            try:
                bill = calculate_bill(billable_kwh(monthly_kwh), self.table)
            except TariffError as e:
                logger.error(f"Cannot price {monthly_kwh:.3f} kWh with {self.table.provider}: {e}")
            else:
                fields.update({
                    "monthly_cost_ht": bill.totals.excl_tax,
                    "monthly_cost_ttc": bill.totals.incl_tax,
                    "monthly_tppan": bill.surtax.excl_tax,
                })
        self.current_bill = bill

        write_influx(self.influx_client, "data", fields, {"provider": self.table.provider}, timestamp=timestamp)
        logger.info(f"Reading processed: Energy={energy}kWh, Monthly={monthly_kwh:.3f}kWh")
        return bill

    def _detect_meter_reset(self, new_energy, timestamp=None):
        """A counter dropping below half its last value means the meter was reset"""
        if self.last_energy_reading is None or new_energy >= self.last_energy_reading * 0.5:
            return

        consumed = self.monthly_consumption()
        logger.critical(f"🚨 METER RESET DETECTED: energy dropped from {self.last_energy_reading} kWh to {new_energy} kWh")
        write_influx(
            self.influx_client,
            "alerts",
            {
                "old_energy": self.last_energy_reading,
                "new_energy": new_energy,
                "severity": "critical",
            },
            {"alert_type": "meter_reset"},
            timestamp=timestamp,
        )
        # Keep what was already consumed this month on the new counter
        self.monthly_start_energy = new_energy - consumed

    # ==========================
    # MONTH CLOSING
    # ==========================

    def _billing_job(self):
        now = datetime.now(TIMEZONE_MOROCCO)
        if now.day != MONTH_START_DAY:
            return
        try:
            self.close_month(now)
        except Exception as e:
            logger.error(f"Month closing failed: {e}")

    def close_month(self, closed_at: Optional[datetime] = None) -> Optional[HistoryEntry]:
        """Bill the month's consumption, store it in the history and start a new month"""
        kwh = billable_kwh(self.monthly_consumption())
        entry = None
        if kwh > 0:
            bill = calculate_bill(kwh, self.table)
            entry = self.history.append(bill, closed_at)
            logger.info(f"Month closed: {kwh} kWh, {bill.totals.incl_tax:.2f} DH TTC ({entry.id})")
        else:
            logger.info("Month closed without consumption")

        self.monthly_start_energy = self.last_energy_reading
        self.current_bill = None
        return entry

    # ==========================
    # STATUS
    # ==========================

    def get_consumption_summary(self) -> Dict:
        bill = self.current_bill
        return {
            "timestamp": datetime.now(TIMEZONE_MOROCCO).isoformat(),
            "provider": self.table.provider,
            "monthly_current": {
                "kwh": self.monthly_consumption(),
                "cost": bill.totals.incl_tax if bill else 0.0,
            },
        }

    def _health_check(self):
        issues = []

        if self.last_data_time is not None:
            age = (datetime.now(TIMEZONE_MOROCCO) - self.last_data_time).total_seconds()
            if age > 300:
                issues.append(f"No reading for {age / 60:.1f} minutes")

        try:
            self.influx_client.ping()
        except Exception as e:
            issues.append(f"InfluxDB unavailable: {e}")

        if issues:
            logger.warning(f"🏥 Health Check Issues: {', '.join(issues)}")
        else:
            logger.info("🏥 Health Check: All systems healthy")
        return not issues

    def run(self):
        """Main loop"""
        mqtt_client = init_mqtt(self.process_mqtt_message)
        logger.info("MQTT connected")
        mqtt_client.loop_start()
        self.mqtt_connected = True
        logger.info("BillingProcessor running...")

        try:
            while True:
                self.scheduler.run_pending()

                # Status and health check every 5 minutes
                if int(time.time()) % 300 == 0:
                    summary = self.get_consumption_summary()
                    logger.info(
                        f"Status: Monthly={summary['monthly_current']['kwh']:.3f}kWh, "
                        f"Cost={summary['monthly_current']['cost']:.2f} DH"
                    )
                    self._health_check()

                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Stopping BillingProcessor...")
        finally:
            mqtt_client.loop_stop()
            mqtt_client.disconnect()
            self.mqtt_connected = False
