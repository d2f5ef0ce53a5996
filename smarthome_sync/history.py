"""
Historical sensor data for the SmartHome sync bridge.

Reads `history/<deviceId>.json` from a Firebase Realtime Database style REST
endpoint, parses the entries defensively and applies the time-range filters
used by the chart and data-history views. Independent of the live registry.
"""

import asyncio
import json
import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import aiohttp

from .data_models import HistoryFilter, HistoryRecord, HistoryStats, TimeRange
from .timezone_utils import MS_PER_DAY, hours_ago_ms, now_ms, start_of_day_ms

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 200

# Field names written by the firmware's history logger
TIMESTAMP_FIELD = "last_update"
TEMPERATURE_FIELD = "temp"
HUMIDITY_FIELD = "humid"
ILLUMINANCE_FIELDS = ("lux", "light")

METRICS = {
    "temperature": lambda record: record.temperature,
    "humidity": lambda record: record.humidity,
    "illuminance": lambda record: record.illuminance,
}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_record(record_id: str, data: Mapping[str, Any]) -> Optional[HistoryRecord]:
    """Build a record from one entry, or None when it has no usable timestamp"""
    timestamp = _number(data.get(TIMESTAMP_FIELD))
    if timestamp is None or timestamp <= 0:
        logger.warning(f"Skip entry with invalid timestamp: {record_id}")
        return None

    illuminance = None
    for key in ILLUMINANCE_FIELDS:
        illuminance = _number(data.get(key))
        if illuminance is not None:
            break

    temperature = _number(data.get(TEMPERATURE_FIELD))
    humidity = _number(data.get(HUMIDITY_FIELD))

    return HistoryRecord(
        timestamp=int(timestamp),
        temperature=float(temperature) if temperature is not None else 0.0,
        humidity=float(humidity) if humidity is not None else 0.0,
        illuminance=int(illuminance) if illuminance is not None else 0,
        record_id=str(record_id),
    )


def parse_records(body: Any) -> List[HistoryRecord]:
    """Parse a decoded response body into records sorted by timestamp"""
    if body is None:
        return []

    if isinstance(body, dict):
        entries: Iterable = body.items()
    elif isinstance(body, list):
        # Integer-like keys come back as a JSON array with null holes
        entries = ((str(index), entry) for index, entry in enumerate(body))
    else:
        raise ValueError(f"Unexpected history payload type: {type(body).__name__}")

    records = []
    for record_id, data in entries:
        if not isinstance(data, dict):
            continue
        record = parse_record(record_id, data)
        if record is not None:
            records.append(record)

    records.sort(key=lambda record: record.timestamp)
    return records


def filter_by_range(records: Iterable[HistoryRecord], hours: Optional[float],
                    now: Optional[int] = None) -> List[HistoryRecord]:
    """Keep records at or after `now - hours`, sorted ascending.

    `hours=None` means no cutoff: every record is returned, sorted.
    """
    ordered = sorted(records, key=lambda record: record.timestamp)
    if hours is None:
        return ordered

    cutoff = hours_ago_ms(hours, now)
    return [record for record in ordered if record.timestamp >= cutoff]


def apply_history_filter(records: Iterable[HistoryRecord], history_filter: HistoryFilter,
                         now: Optional[int] = None) -> List[HistoryRecord]:
    """Apply a data-history tab filter"""
    if now is None:
        now = now_ms()

    if history_filter is HistoryFilter.TODAY:
        cutoff = start_of_day_ms(now)
    elif history_filter is HistoryFilter.THIS_WEEK:
        cutoff = now - 7 * MS_PER_DAY
    elif history_filter is HistoryFilter.THIS_MONTH:
        cutoff = now - 30 * MS_PER_DAY
    else:
        return sorted(records, key=lambda record: record.timestamp)

    return sorted(
        (record for record in records if record.timestamp >= cutoff),
        key=lambda record: record.timestamp,
    )


def summarize(records: Iterable[HistoryRecord], metric: str) -> HistoryStats:
    """Average, maximum and minimum of one metric"""
    if metric not in METRICS:
        raise ValueError(f"Unknown metric '{metric}', expected one of {sorted(METRICS)}")

    values = [float(METRICS[metric](record)) for record in records]
    if not values:
        return HistoryStats(metric=metric)

    return HistoryStats(
        metric=metric,
        average=sum(values) / len(values),
        maximum=max(values),
        minimum=min(values),
        count=len(values),
    )


class HistoryFetchError(Exception):
    """The history store could not be read"""


class HistoryAggregator:
    """Fetches and filters history records from the remote store"""

    def __init__(self, base_url: str, auth_token: Optional[str] = None,
                 timeout_seconds: float = 8.0):
        self.base_url = base_url.rstrip('/')
        self.auth_token = auth_token
        self.timeout = aiohttp.ClientTimeout(sock_connect=timeout_seconds, sock_read=timeout_seconds)
        self._error_callbacks: List[Callable[[str, str], None]] = []

    def add_error_callback(self, callback: Callable[[str, str], None]):
        """Add callback invoked with (device_id, message) when a fetch fails"""
        self._error_callbacks.append(callback)

    def history_url(self, device_id: str) -> str:
        return f"{self.base_url}/history/{device_id}.json"

    def _query_params(self, limit: int) -> Dict[str, str]:
        params = {
            "orderBy": '"$key"',
            "limitToLast": str(limit),
        }
        if self.auth_token:
            params["auth"] = self.auth_token
        return params

    async def _read(self, device_id: str, limit: int) -> Any:
        url = self.history_url(device_id)
        logger.debug(f"Fetching history: {url} (limit {limit})")

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, params=self._query_params(limit),
                                   headers={"Accept": "application/json"}) as response:
                if response.status != 200:
                    error_body = await response.text()
                    raise HistoryFetchError(f"HTTP {response.status}: {error_body[:200]}")
                text = await response.text()

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise HistoryFetchError(f"Unparseable history response: {e}")

    async def fetch(self, device_id: str, limit: int = DEFAULT_LIMIT) -> List[HistoryRecord]:
        """Fetch up to `limit` most recent records, ascending by timestamp.

        An empty list after a failed read means "unavailable"; the failure is
        logged and passed to the error callbacks.
        """
        try:
            body = await self._read(device_id, limit)
            records = parse_records(body)
        except (aiohttp.ClientError, asyncio.TimeoutError, HistoryFetchError, ValueError) as e:
            message = str(e) or type(e).__name__
            logger.error(f"History fetch failed for {device_id}: {message}")
            self._report_error(device_id, message)
            return []

        logger.debug(f"Parsed {len(records)} history entries for {device_id}")
        return records

    async def fetch_range(self, device_id: str, time_range: TimeRange = TimeRange.DAY,
                          limit: int = DEFAULT_LIMIT, now: Optional[int] = None) -> List[HistoryRecord]:
        """Fetch and keep only the records inside a chart time range"""
        records = await self.fetch(device_id, limit)
        filtered = filter_by_range(records, time_range.hours, now)
        logger.info(f"Loaded {len(filtered)} entries for {device_id} ({time_range.label})")
        return filtered

    def _report_error(self, device_id: str, message: str):
        for callback in self._error_callbacks:
            try:
                callback(device_id, message)
            except Exception as e:
                logger.error(f"Error in history error callback: {e}")
