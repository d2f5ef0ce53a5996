"""
HTTP API for the SmartHome sync bridge.

Exposes the device registry, command dispatch, history queries and local
settings over a small REST interface.
"""

import json
import logging
import math
from typing import Optional

from aiohttp import web
import aiohttp_cors

from .commands import NotConnectedError, DispatchError
from .data_models import HistoryFilter, ThresholdConfig, TimeRange
from .history import apply_history_filter, summarize

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "day": TimeRange.DAY,
    "week": TimeRange.WEEK,
    "month": TimeRange.MONTH,
    "all": TimeRange.ALL_TIME,
}

HISTORY_FILTERS = {
    "today": HistoryFilter.TODAY,
    "this_week": HistoryFilter.THIS_WEEK,
    "this_month": HistoryFilter.THIS_MONTH,
    "all": HistoryFilter.ALL_TIME,
}


class BridgeHTTPServer:
    """HTTP server exposing bridge functionality"""

    def __init__(self, bridge, host: str = "0.0.0.0", port: int = 8000):
        self.bridge = bridge
        self.host = host
        self.port = port
        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._setup_routes()
        self._setup_cors()

    def _setup_cors(self):
        """Setup CORS for cross-origin requests"""
        cors = aiohttp_cors.setup(self.app, defaults={
            "*": aiohttp_cors.ResourceOptions(
                allow_credentials=True,
                expose_headers="*",
                allow_headers="*",
                allow_methods="*"
            )
        })

        for route in list(self.app.router.routes()):
            cors.add(route)

    def _setup_routes(self):
        """Setup HTTP routes"""
        self.app.router.add_get("/health", self.health_check)
        self.app.router.add_get("/status", self.get_status)

        self.app.router.add_get("/devices", self.get_devices)
        self.app.router.add_get("/devices/{device_id}", self.get_device_info)
        self.app.router.add_put("/devices/{device_id}/name", self.rename_device)
        self.app.router.add_post("/devices/{device_id}/commands/{command}", self.send_command)
        self.app.router.add_get("/devices/{device_id}/history", self.get_history)

        self.app.router.add_get("/settings/thresholds", self.get_thresholds)
        self.app.router.add_put("/settings/thresholds", self.update_thresholds)
        self.app.router.add_get("/settings/alerts", self.get_alerts)
        self.app.router.add_put("/settings/alerts", self.update_alerts)

    async def _json_body(self, request) -> dict:
        if not request.can_read_body:
            return {}
        data = await request.json()
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(
                text=json.dumps({"error": "Request body must be a JSON object"}),
                content_type="application/json",
            )
        return data

    async def health_check(self, request):
        """Health check endpoint"""
        return web.json_response({
            "status": "healthy",
            "service": "smarthome-sync",
            "mqtt_connected": self.bridge.connected,
        })

    async def get_status(self, request):
        return web.json_response(self.bridge.get_status())

    async def get_devices(self, request):
        """Get list of devices, optionally only those without recent traffic"""
        stale_minutes = request.query.get("stale_minutes")
        if stale_minutes is None:
            return web.json_response({"devices": self.bridge.registry.get_device_list_summary()})

        try:
            timeout = float(stale_minutes)
        except ValueError:
            return web.json_response({"error": "stale_minutes must be a number"}, status=400)

        stale = self.bridge.registry.get_stale_devices(timeout)
        return web.json_response({"devices": [device.to_dict() for device in stale]})

    async def get_device_info(self, request):
        """Get device information"""
        device_id = request.match_info['device_id']
        summary = self.bridge.registry.get_device_summary(device_id)
        if summary is None:
            return web.json_response({"error": f"Unknown device '{device_id}'"}, status=404)
        return web.json_response({"device": summary})

    async def rename_device(self, request):
        device_id = request.match_info['device_id']
        try:
            data = await self._json_body(request)
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON in request body"}, status=400)

        name = str(data.get("name", "")).strip()
        if not name:
            return web.json_response({"error": "Missing 'name' in request body"}, status=400)

        device = self.bridge.rename_device(device_id, name)
        return web.json_response({
            "device_id": device_id,
            "name": name,
            "known": device is not None,
        })

    async def send_command(self, request):
        """Dispatch a command to a device"""
        device_id = request.match_info['device_id']
        command = request.match_info['command']

        try:
            params = await self._json_body(request)
            outbound = await self.bridge.send_command(device_id, command, params)
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON in request body"}, status=400)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)
        except NotConnectedError as e:
            return web.json_response({"error": str(e)}, status=409)
        except DispatchError as e:
            logger.error(f"Error sending {command} to {device_id}: {e}")
            return web.json_response({"error": str(e)}, status=503)

        return web.json_response({
            "success": True,
            "topic": self.bridge.dispatcher.command_topic(device_id),
            "payload": outbound.to_payload(),
        })

    async def get_history(self, request):
        """Get historical readings for a device"""
        device_id = request.match_info['device_id']
        range_name = request.query.get("range", "day")
        filter_name = request.query.get("filter")
        metric = request.query.get("metric")

        time_range = TIME_RANGES.get(range_name)
        if time_range is None:
            return web.json_response(
                {"error": f"Unknown range '{range_name}', expected one of {sorted(TIME_RANGES)}"},
                status=400,
            )

        history_filter = None
        if filter_name is not None:
            history_filter = HISTORY_FILTERS.get(filter_name)
            if history_filter is None:
                return web.json_response(
                    {"error": f"Unknown filter '{filter_name}', expected one of {sorted(HISTORY_FILTERS)}"},
                    status=400,
                )

        records = await self.bridge.fetch_history(device_id, time_range)
        if history_filter is not None:
            records = apply_history_filter(records, history_filter)

        response = {
            "device_id": device_id,
            "range": time_range.label,
            "records": [record.to_dict() for record in records],
        }
        if metric:
            try:
                response["stats"] = summarize(records, metric).to_dict()
            except ValueError as e:
                return web.json_response({"error": str(e)}, status=400)

        return web.json_response(response)

    async def get_thresholds(self, request):
        return web.json_response(self.bridge.get_thresholds().to_dict())

    async def update_thresholds(self, request):
        try:
            data = await self._json_body(request)
            current = self.bridge.get_thresholds()
            thresholds = ThresholdConfig(
                temperature_limit=float(data.get("temperature_limit", current.temperature_limit)),
                humidity_limit=float(data.get("humidity_limit", current.humidity_limit)),
                illuminance_limit=int(data.get("illuminance_limit", current.illuminance_limit)),
            )
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON in request body"}, status=400)
        except (TypeError, ValueError, OverflowError) as e:
            return web.json_response({"error": f"Invalid threshold value: {e}"}, status=400)

        if not (math.isfinite(thresholds.temperature_limit) and math.isfinite(thresholds.humidity_limit)):
            return web.json_response({"error": "Threshold limits must be finite numbers"}, status=400)

        self.bridge.save_thresholds(thresholds)
        return web.json_response(thresholds.to_dict())

    async def get_alerts(self, request):
        return web.json_response({"enabled": self.bridge.settings.is_alerts_enabled()})

    async def update_alerts(self, request):
        try:
            data = await self._json_body(request)
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON in request body"}, status=400)

        enabled = data.get("enabled")
        if not isinstance(enabled, bool):
            return web.json_response({"error": "'enabled' must be true or false"}, status=400)

        self.bridge.set_alerts_enabled(enabled)
        return web.json_response({"enabled": enabled})

    async def start(self):
        """Start the HTTP server"""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info(f"HTTP server started on http://{self.host}:{self.port}")
        logger.info(f"  - Health check: http://{self.host}:{self.port}/health")
        logger.info(f"  - Devices API: http://{self.host}:{self.port}/devices")

    async def stop(self):
        """Stop the HTTP server"""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("HTTP server stopped")
