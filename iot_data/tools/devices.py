"""MCP tools for device snapshots, readings and cache control."""

import logging

from fastmcp import FastMCP

from iot_data.models.device import Device
from iot_data.models.options import FetchOptions
from iot_data.models.reading import MetricStats, Reading
from iot_data.server import get_context
from iot_data.tools.error_messages import safe_tool_wrapper

logger = logging.getLogger(__name__)

_MAX_READINGS_SHOWN = 20


def _fmt(value: float | None, unit: str = "") -> str:
    return "n/a" if value is None else f"{value:.1f}{unit}"


def format_device(device: Device) -> str:
    """One-line summary of a device snapshot."""
    parts = [
        f"{device.name} [{device.id}]",
        f"room: {device.room}",
        f"status: {device.status}",
        f"temp: {_fmt(device.temperature, '°C')}",
        f"humidity: {_fmt(device.humidity, '%')}",
    ]
    if device.co2 is not None:
        quality = f" ({device.air_quality})" if device.air_quality else ""
        parts.append(f"CO2: {device.co2:.0f} ppm{quality}")
    if device.last_seen is not None:
        parts.append(f"last seen: {device.last_seen.isoformat()}")
    if device.source is not None:
        parts.append(f"source: {device.source}")
    line = " | ".join(parts)
    if device.alerts:
        line += f"\n  {len(device.alerts)} alert(s): " + "; ".join(
            f"[{a.severity}] {a.message}" for a in device.alerts
        )
    return line


def format_devices(devices: list[Device], title: str = "Devices") -> str:
    if not devices:
        return "No devices found."
    lines = [f"{title} ({len(devices)}):"]
    lines.extend(f"- {format_device(d)}" for d in devices)
    return "\n".join(lines)


def format_readings(readings: list[Reading], device_id: str) -> str:
    if not readings:
        return f"No readings for device {device_id}."
    newest_first = sorted(readings, key=lambda r: r.timestamp, reverse=True)
    lines = [f"Readings for {device_id} ({len(readings)}, newest first):"]
    for reading in newest_first[:_MAX_READINGS_SHOWN]:
        lines.append(
            f"- {reading.timestamp.isoformat()}: temp {_fmt(reading.temperature, '°C')}, "
            f"humidity {_fmt(reading.humidity, '%')}"
        )
    if len(readings) > _MAX_READINGS_SHOWN:
        lines.append(f"... {len(readings) - _MAX_READINGS_SHOWN} more")
    return "\n".join(lines)


def _format_metric(label: str, stats: MetricStats, unit: str) -> str:
    return (
        f"{label}: current {_fmt(stats.current, unit)}, min {_fmt(stats.min, unit)}, "
        f"max {_fmt(stats.max, unit)}, avg {_fmt(stats.avg, unit)}"
    )


def register_device_tools(mcp: FastMCP) -> None:  # noqa: C901
    """Register device data tools on the MCP server."""

    @mcp.tool
    async def list_devices(
        source: str = "auto",
        room: str | None = None,
        force_refresh: bool = False,
    ) -> str:
        """List sensor devices with their latest values.

        Args:
            source: "auto" (firebase when reachable, else local), "firebase"
                    or "local".
            room: Only show devices in this room, e.g. "Kitchen".
            force_refresh: Skip the cache and query the backend.

        Returns:
            One line per device.
        """

        async def _run() -> str:
            options = FetchOptions(source=source, force_refresh=force_refresh)
            context = get_context()
            if room:
                devices = await context.get_devices_by_room(room, options)
                return format_devices(devices, f"Devices in {room}")
            return format_devices(await context.get_devices(options))

        return await safe_tool_wrapper(_run)

    @mcp.tool
    async def get_device(device_id: str, source: str = "auto") -> str:
        """Show one device with its most recent readings.

        Args:
            device_id: Sensor id, e.g. "sensor-1".
            source: "auto", "firebase" or "local".
        """

        async def _run() -> str:
            result = await get_context().get_device_with_readings(
                device_id, FetchOptions(source=source)
            )
            if result.device is None:
                return f"Device '{device_id}' not found."
            return (
                format_device(result.device)
                + "\n"
                + format_readings(result.readings, device_id)
            )

        return await safe_tool_wrapper(_run, context={"device": device_id})

    @mcp.tool
    async def merged_devices() -> str:
        """List devices merged across firebase and the local server.

        Names come from firebase, live values from whichever source reported
        last, and statistics from the local server.
        """

        async def _run() -> str:
            devices = await get_context().get_merged_devices()
            return format_devices(devices, "Merged devices")

        return await safe_tool_wrapper(_run)

    @mcp.tool
    async def device_readings(device_id: str, force_refresh: bool = False) -> str:
        """Show the latest readings of a device.

        Args:
            device_id: Sensor id.
            force_refresh: Skip the cache and query the backend.
        """

        async def _run() -> str:
            readings = await get_context().get_device_readings(
                device_id, FetchOptions(force_refresh=force_refresh)
            )
            return format_readings(readings, device_id)

        return await safe_tool_wrapper(_run, context={"device": device_id})

    @mcp.tool
    async def historical_data(device_id: str, start: str, end: str) -> str:
        """Show readings of a device between two ISO dates.

        Args:
            device_id: Sensor id.
            start: Range start, e.g. "2026-01-01T00:00:00Z".
            end: Range end, e.g. "2026-01-02T00:00:00Z".
        """

        async def _run() -> str:
            readings = await get_context().get_historical_data(device_id, start, end)
            return format_readings(readings, device_id)

        return await safe_tool_wrapper(_run, context={"device": device_id})

    @mcp.tool
    async def device_stats(device_id: str) -> str:
        """Summarize temperature and humidity over a device's latest readings.

        Args:
            device_id: Sensor id.
        """

        async def _run() -> str:
            stats = await get_context().get_device_stats(device_id)
            if stats.reading_count == 0:
                return f"No readings for device {device_id}."
            last = stats.last_updated.isoformat() if stats.last_updated else "n/a"
            return "\n".join(
                [
                    f"Stats for {device_id} ({stats.reading_count} readings, last {last}):",
                    _format_metric("Temperature", stats.temperature_stats, "°C"),
                    _format_metric("Humidity", stats.humidity_stats, "%"),
                ]
            )

        return await safe_tool_wrapper(_run, context={"device": device_id})

    @mcp.tool
    async def refresh_devices(include_readings: bool = False) -> str:
        """Re-fetch the device list from the backends, bypassing the cache.

        Args:
            include_readings: Also re-fetch every device's readings.
        """

        async def _run() -> str:
            context = get_context()
            if include_readings:
                devices = await context.refresh_all_data()
                return f"Refreshed {len(devices)} device(s) and their readings."
            devices = await context.refresh_devices()
            return f"Refreshed {len(devices)} device(s)."

        return await safe_tool_wrapper(_run)

    @mcp.tool
    async def clear_cache(pattern: str | None = None) -> str:
        """Drop cached data.

        Args:
            pattern: Only drop keys containing this text, e.g. "readings:".
                     Drops everything when omitted.
        """

        async def _run() -> str:
            await get_context().clear_cache(pattern)
            if pattern:
                return f"Cache cleared for keys containing '{pattern}'."
            return "Cache cleared."

        return await safe_tool_wrapper(_run)
