"""Client for the Web Inspector service: list inspectable apps and open DevTools sockets."""

from __future__ import annotations

import asyncio
import plistlib
import struct
from typing import Any

import websockets
from websockets.exceptions import WebSocketException

SERVICE_NAME = "com.apple.webinspector"

_LENGTH = struct.Struct(">I")


class WebInspectorError(Exception):
    """The Web Inspector service returned something unusable or failed."""


class WebInspectorClient:
    """Talks to the Web Inspector service over a connected stream."""

    def __init__(self, reader: asyncio.StreamReader, writer: Any) -> None:
        self._reader = reader
        self._writer = writer

    async def _send(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def _read_plist(self) -> Any:
        try:
            header = await self._reader.readexactly(_LENGTH.size)
            (length,) = _LENGTH.unpack(header)
            data = await self._reader.readexactly(length)
        except asyncio.IncompleteReadError as exc:
            raise WebInspectorError("connection closed while reading a reply") from exc
        try:
            return plistlib.loads(data)
        except Exception as exc:
            raise WebInspectorError(str(exc)) from exc

    async def get_applications(self) -> list[str]:
        """Return the names of the inspectable applications."""
        await self._send(b"L\x00\x00\x00")
        reply = await self._read_plist()
        apps = reply.get("Applications") if isinstance(reply, dict) else None
        if not isinstance(apps, list):
            raise WebInspectorError("Invalid application list structure")
        return [
            app["Name"]
            for app in apps
            if isinstance(app, dict) and isinstance(app.get("Name"), str)
        ]

    async def connect_to_webview(self, app_id: str) -> Any:
        """Ask for a web view of ``app_id`` and open its DevTools WebSocket."""
        raw_id = app_id.encode("utf-8")
        await self._send(b"C\x00\x00\x00" + _LENGTH.pack(len(raw_id)) + raw_id)
        reply = await self._read_plist()
        url = reply.get("WebSocketURL") if isinstance(reply, dict) else None
        if not isinstance(url, str):
            raise WebInspectorError("Missing WebSocket URL")
        try:
            return await websockets.connect(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise WebInspectorError(str(exc)) from exc

    @staticmethod
    async def forward_messages(ws: Any) -> None:
        """Print every DevTools text message until the socket closes."""
        try:
            async for message in ws:
                if isinstance(message, str):
                    print(f"Received DevTools message: {message}")
        except WebSocketException as exc:
            raise WebInspectorError(str(exc)) from exc