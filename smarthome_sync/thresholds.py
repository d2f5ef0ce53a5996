"""
Threshold evaluation for sensor readings.
"""

import logging
from typing import List, Optional

from .data_models import AlertEvent, Sensors, ThresholdConfig

logger = logging.getLogger(__name__)


class ThresholdEvaluator:
    """Compares a sensor snapshot against configured limits.

    Stateless: every reading above a limit produces an alert, including
    consecutive readings above the same limit. Equality never alerts.
    Whether alerts reach a person is decided by the caller.
    """

    def evaluate(self, previous: Optional[Sensors], new: Sensors,
                 device_name: str, config: ThresholdConfig,
                 device_id: Optional[str] = None) -> List[AlertEvent]:
        alerts = []

        if new.temperature > config.temperature_limit:
            alerts.append(AlertEvent(
                device_name=device_name,
                metric_name="Temperature",
                formatted_value=f"{float(new.temperature)}°C",
                formatted_limit=f"{float(config.temperature_limit)}°C",
                device_id=device_id,
                value=new.temperature,
                limit=config.temperature_limit,
            ))

        if new.humidity > config.humidity_limit:
            alerts.append(AlertEvent(
                device_name=device_name,
                metric_name="Humidity",
                formatted_value=f"{float(new.humidity)}%",
                formatted_limit=f"{float(config.humidity_limit)}%",
                device_id=device_id,
                value=new.humidity,
                limit=config.humidity_limit,
            ))

        if new.illuminance > config.illuminance_limit:
            alerts.append(AlertEvent(
                device_name=device_name,
                metric_name="Light",
                formatted_value=f"{int(new.illuminance)} lux",
                formatted_limit=f"{int(config.illuminance_limit)} lux",
                device_id=device_id,
                value=new.illuminance,
                limit=config.illuminance_limit,
            ))

        if alerts:
            logger.debug(f"{len(alerts)} threshold(s) exceeded on {device_name}")
        return alerts
