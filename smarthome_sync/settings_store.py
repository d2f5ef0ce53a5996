"""
Persisted local settings for the SmartHome sync bridge.

Device display names, alert thresholds, the alerts-enabled flag and the
last-used MQTT credentials, kept in a small SQLite file.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, Optional

from .data_models import ThresholdConfig

logger = logging.getLogger(__name__)

THRESHOLDS_KEY = "thresholds"
ALERTS_ENABLED_KEY = "alerts_enabled"
MQTT_CREDENTIALS_KEY = "mqtt_credentials"


class SettingsStore:
    """Key-value and device-name storage backed by SQLite"""

    def __init__(self, db_path: str = "smarthome.db"):
        self.db_path = db_path
        self.init_database()

    def init_database(self):
        """Initialize database schema"""
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS device_names (
                        device_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS settings (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                """)
            logger.info(f"Settings database ready at {self.db_path}")
        except Exception as e:
            logger.error(f"Failed to initialize settings database: {e}")
            raise

    # Device names

    def get_device_name(self, device_id: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT name FROM device_names WHERE device_id = ?", (device_id,)
            ).fetchone()
        return row[0] if row else None

    def set_device_name(self, device_id: str, name: str):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT OR REPLACE INTO device_names (device_id, name, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
            """, (device_id, name))
        logger.debug(f"Saved name for {device_id}: {name}")

    def get_all_device_names(self) -> Dict[str, str]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("SELECT device_id, name FROM device_names").fetchall()
        return {device_id: name for device_id, name in rows}

    # Generic settings

    def _get(self, key: str, default: Any = None) -> Any:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Corrupt value for setting '{key}', using default")
            return default

    def _set(self, key: str, value: Any):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT OR REPLACE INTO settings (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
            """, (key, json.dumps(value)))

    # Thresholds

    def get_thresholds(self) -> ThresholdConfig:
        stored = self._get(THRESHOLDS_KEY)
        defaults = ThresholdConfig()
        if not isinstance(stored, dict):
            return defaults
        return ThresholdConfig(
            temperature_limit=float(stored.get("temperature_limit", defaults.temperature_limit)),
            humidity_limit=float(stored.get("humidity_limit", defaults.humidity_limit)),
            illuminance_limit=int(stored.get("illuminance_limit", defaults.illuminance_limit)),
        )

    def save_thresholds(self, thresholds: ThresholdConfig):
        self._set(THRESHOLDS_KEY, thresholds.to_dict())
        logger.info(
            f"Thresholds saved: Temp={thresholds.temperature_limit}°C, "
            f"Humid={thresholds.humidity_limit}%, Lux={thresholds.illuminance_limit}"
        )

    # Alerts flag

    def is_alerts_enabled(self) -> bool:
        return bool(self._get(ALERTS_ENABLED_KEY, False))

    def set_alerts_enabled(self, enabled: bool):
        self._set(ALERTS_ENABLED_KEY, bool(enabled))
        logger.info(f"Alert notifications {'enabled' if enabled else 'disabled'}")

    # MQTT credentials

    def get_mqtt_credentials(self) -> Optional[Dict[str, Any]]:
        stored = self._get(MQTT_CREDENTIALS_KEY)
        return stored if isinstance(stored, dict) else None

    def save_mqtt_credentials(self, broker: str, port: int, username: str, password: str):
        self._set(MQTT_CREDENTIALS_KEY, {
            "broker": broker,
            "port": port,
            "username": username,
            "password": password,
        })
        logger.debug(f"Saved MQTT credentials for {broker}:{port}")
