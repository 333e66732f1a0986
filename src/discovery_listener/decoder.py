"""
Announcement decoder for the device register topic.

Turns raw register payloads into DiscoveredDevice records and hands each one
to the registration pipeline as a single-element batch. Malformed payloads are
logged and dropped; nothing raised here may reach the paho network thread.

Expected payload:
{
    "name": "d1",
    "description": "desc",
    "protocols": {"mqtt": {"topic": "t1"}},
    "labels": ["a", "b"]
}
"""

from __future__ import annotations

import json
import logging
import queue
from typing import Any, Optional

from discovery_listener.models import DecodeResult, DiscoveredDevice, Rejection

logger = logging.getLogger(__name__)

_PREFIX = "[Register listener]"


def _parse_object(payload: bytes) -> Optional[dict[str, Any]]:
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, ValueError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def _decode_string(register: dict[str, Any], key: str) -> DecodeResult | str:
    if key not in register:
        return DecodeResult.reject(Rejection.MISSING_FIELD, key)
    val = register[key]
    if not isinstance(val, str):
        return DecodeResult.reject(Rejection.NOT_A_STRING, key)
    return val


def _decode_protocols(
    register: dict[str, Any], group: str
) -> DecodeResult | dict[str, dict[str, str]]:
    if "protocols" not in register:
        return DecodeResult.reject(Rejection.MISSING_FIELD, "protocols")
    protocols = register["protocols"]
    if not isinstance(protocols, dict):
        return DecodeResult.reject(Rejection.NOT_AN_OBJECT, "protocols")
    if group not in protocols:
        return DecodeResult.reject(Rejection.MISSING_PROTOCOL_GROUP, f"protocols.{group}")
    properties = protocols[group]
    if not isinstance(properties, dict):
        return DecodeResult.reject(Rejection.NOT_AN_OBJECT, f"protocols.{group}")

    protocol: dict[str, str] = {}
    for key, value in properties.items():
        if not isinstance(value, str):
            return DecodeResult.reject(Rejection.INVALID_PROTOCOL_PROPERTY, f"protocols.{group}.{key}")
        protocol[key] = value
    return {group: protocol}


def _decode_labels(register: dict[str, Any]) -> DecodeResult | list[str]:
    if "labels" not in register:
        return DecodeResult.reject(Rejection.MISSING_FIELD, "labels")
    raw = register["labels"]
    if not isinstance(raw, list):
        return DecodeResult.reject(Rejection.NOT_AN_ARRAY, "labels")
    labels: list[str] = []
    for i, v in enumerate(raw):
        if not isinstance(v, str):
            return DecodeResult.reject(Rejection.INVALID_LABEL, f"labels[{i}]")
        labels.append(v)
    return labels


class AnnouncementDecoder:
    """
    Per-message decoder bound to one output channel.

    The channel and logger are injected; the decoder itself keeps no state
    between messages, so paho's serialized callback delivery is enough and no
    locking is needed here.
    """

    def __init__(
        self,
        output: "queue.Queue[list[DiscoveredDevice]]",
        protocol_group: str,
        *,
        log: Optional[logging.Logger] = None,
    ) -> None:
        if not protocol_group:
            raise ValueError("protocol_group must be a non-empty string")
        self.output = output
        self.protocol_group = protocol_group
        self._log = log or logger

    def decode(self, payload: bytes) -> DecodeResult:
        register = _parse_object(payload)
        if register is None:
            return DecodeResult.reject(Rejection.INVALID_JSON)
        return self.decode_register(register)

    def decode_register(self, register: dict[str, Any]) -> DecodeResult:
        name = _decode_string(register, "name")
        if isinstance(name, DecodeResult):
            return name
        description = _decode_string(register, "description")
        if isinstance(description, DecodeResult):
            return description
        if not name:
            return DecodeResult.reject(Rejection.EMPTY_NAME, "name")

        protocols = _decode_protocols(register, self.protocol_group)
        if isinstance(protocols, DecodeResult):
            return protocols

        labels = _decode_labels(register)
        if isinstance(labels, DecodeResult):
            return labels

        return DecodeResult.accept(
            DiscoveredDevice(
                name=name,
                description=description,
                protocols=protocols,
                labels=labels,
            )
        )

    def handle(self, payload: bytes) -> None:
        """Decode one payload; forward it on success, log and drop otherwise."""
        result = self.decode(payload)
        if not result.ok:
            self._report(result, payload)
            return

        device = result.device
        self._log.info("%s discoveredDevice: %s", _PREFIX, device.name)
        # Blocks while the channel is full; backpressure comes from the consumer.
        self.output.put([device])

    def on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        """paho on_message adapter."""
        try:
            self.handle(msg.payload)
        except Exception:
            self._log.exception("%s Failed to handle register on topic=%s", _PREFIX, getattr(msg, "topic", None))

    def _report(self, result: DecodeResult, payload: bytes) -> None:
        msg = _printable(payload)
        kind = result.rejection
        if kind is Rejection.INVALID_JSON:
            self._log.debug("%s Register ignored. Payload is not a JSON object : msg=%s", _PREFIX, msg)
        elif kind is Rejection.MISSING_FIELD or kind is Rejection.MISSING_PROTOCOL_GROUP:
            self._log.warning("%s Register ignored. No %s found : msg=%s", _PREFIX, result.field, msg)
        elif kind is Rejection.NOT_A_STRING:
            self._log.warning("%s Register ignored. %s should be string : msg=%s", _PREFIX, result.field, msg)
        elif kind is Rejection.EMPTY_NAME:
            self._log.warning("%s Register ignored. %s should not be empty : msg=%s", _PREFIX, result.field, msg)
        elif kind is Rejection.NOT_AN_OBJECT:
            self._log.warning("%s Register ignored. %s should be object : msg=%s", _PREFIX, result.field, msg)
        elif kind is Rejection.NOT_AN_ARRAY:
            self._log.warning("%s Register ignored. %s should be array : msg=%s", _PREFIX, result.field, msg)
        else:
            self._log.warning("%s Register ignored. %s should be string : msg=%s", _PREFIX, result.field, msg)


def _printable(payload: Any) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8", errors="replace")
    return str(payload)
