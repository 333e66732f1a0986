"""
Discovery records and decode results.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class DiscoveredDevice:
    """A validated device announcement, ready for registration."""

    name: str
    description: str
    protocols: dict[str, dict[str, str]]
    labels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "protocols": {k: dict(v) for k, v in self.protocols.items()},
            "labels": list(self.labels),
        }


class Rejection(str, enum.Enum):
    INVALID_JSON = "invalid_json"
    MISSING_FIELD = "missing_field"
    NOT_A_STRING = "not_a_string"
    EMPTY_NAME = "empty_name"
    NOT_AN_OBJECT = "not_an_object"
    MISSING_PROTOCOL_GROUP = "missing_protocol_group"
    INVALID_PROTOCOL_PROPERTY = "invalid_protocol_property"
    NOT_AN_ARRAY = "not_an_array"
    INVALID_LABEL = "invalid_label"


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """
    Outcome of decoding one announcement.

    Exactly one of device / rejection is set. field names the offending key
    for rejections (None for INVALID_JSON).
    """

    device: Optional[DiscoveredDevice] = None
    rejection: Optional[Rejection] = None
    field: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.device is not None

    @staticmethod
    def accept(device: DiscoveredDevice) -> "DecodeResult":
        return DecodeResult(device=device)

    @staticmethod
    def reject(rejection: Rejection, field: Optional[str] = None) -> "DecodeResult":
        return DecodeResult(rejection=rejection, field=field)
