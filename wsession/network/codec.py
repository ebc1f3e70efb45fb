"""Payload codec: application values to wire payloads and back."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder

LOGGER = logging.getLogger(__name__)

BINARY_TYPES = (bytes, bytearray, memoryview)

Serializer = Callable[[Any], Any]
Deserializer = Callable[[Any], Any]


def is_binary(value: Any) -> bool:
    return isinstance(value, BINARY_TYPES)


def _bytes_to_text(payload: bytes | bytearray | memoryview) -> str:
    return bytes(payload).decode("utf-8", errors="replace")


class Codec:
    """Encodes outbound values and decodes inbound payloads.

    Custom hooks run first; a failing hook falls through to automatic JSON
    handling (unless disabled), and a failing JSON step hands back the raw
    payload. No codec failure ever propagates to the session.
    """

    def __init__(
        self,
        serialize: Optional[Serializer] = None,
        deserialize: Optional[Deserializer] = None,
        *,
        auto_json: bool = True,
    ) -> None:
        self.serialize = serialize
        self.deserialize = deserialize
        self.auto_json = auto_json

    def encode(self, value: Any) -> Any:
        if self.serialize is not None:
            try:
                return self.serialize(value)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Custom serializer failed, falling back: %s", exc)
        if not self.auto_json or is_binary(value):
            return value
        try:
            return json.dumps(jsonable_encoder(value))
        except (TypeError, ValueError) as exc:
            LOGGER.debug("JSON encode failed, sending raw value: %s", exc)
            return value

    def decode(self, payload: Any) -> Any:
        if self.deserialize is not None:
            try:
                return self.deserialize(payload)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Custom deserializer failed, falling back: %s", exc)
        if not self.auto_json:
            return payload
        if isinstance(payload, str):
            try:
                return json.loads(payload)
            except ValueError:
                return payload
        return payload

    async def decode_binary(self, payload: bytes | bytearray | memoryview) -> Any:
        """Decode a binary frame to text off the event loop, then apply automatic JSON."""

        text = await asyncio.to_thread(_bytes_to_text, payload)
        if not self.auto_json:
            return text
        try:
            return json.loads(text)
        except ValueError:
            return text
