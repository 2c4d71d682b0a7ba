"""Domain models for parsed SIRI-VM vehicle activity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Keys that survive serialisation even when empty/zero.
ALWAYS_PRESENT_KEYS = frozenset({"vehicle_ref", "line_ref", "longitude", "latitude"})


def _is_empty(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return value is None or value == "" or value == 0 or value == [] or value == {}


class StopCall(BaseModel):
    """Predicted or scheduled call at one stop."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    stop_point_ref: str = ""
    stop_point_name: str = ""
    visit_number: int = 0
    aimed_arrival_time: str = ""
    expected_arrival_time: str = ""
    aimed_departure_time: str = ""
    expected_departure_time: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.stop_point_ref and not self.stop_point_name

    def to_log_fields(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if not _is_empty(v)}


class VehicleRecord(BaseModel):
    """One vehicle's position and journey state from a SIRI-VM feed.

    Attribute names are the domain names; aliases are the keys used in the
    emitted log lines, which are kept stable for downstream dashboards.
    """

    model_config = ConfigDict(populate_by_name=True)

    vehicle_id: str = Field(default="", alias="vehicle_ref")
    line_ref: str = ""
    direction: str = Field(default="", alias="direction_ref")
    operator_ref: str = ""
    origin_ref: str = ""
    origin_name: str = ""
    destination_ref: str = ""
    destination_name: str = ""
    origin_departure_time: str = Field(default="", alias="origin_aimed_departure_time")
    destination_arrival_time: str = Field(default="", alias="destination_aimed_arrival_time")
    longitude: float = 0.0
    latitude: float = 0.0
    recorded_at: str = Field(default="", alias="recorded_at_time")
    valid_until: str = Field(default="", alias="valid_until_time")
    bus_image: str = ""

    bearing: float = 0.0
    velocity: float = 0.0
    occupancy: str = ""
    progress_status: str = ""
    published_line_name: str = ""
    block_ref: str = ""

    monitored_call: StopCall | None = None
    onward_calls: list[StopCall] = Field(default_factory=list)

    def to_log_fields(self) -> dict[str, Any]:
        """Serialise to wire keys, omitting empty optional fields.

        An upstream value of exactly 0 for bearing or velocity is dropped the
        same way a missing one is.
        """
        data = self.model_dump(by_alias=True, exclude={"monitored_call", "onward_calls"})
        fields = {k: v for k, v in data.items() if k in ALWAYS_PRESENT_KEYS or not _is_empty(v)}

        if self.monitored_call is not None and not self.monitored_call.is_empty:
            fields["monitored_call"] = self.monitored_call.to_log_fields()
        onward = [call.to_log_fields() for call in self.onward_calls if not call.is_empty]
        if onward:
            fields["onward_calls"] = onward
        return fields


class ParsedBatch(BaseModel):
    """All vehicle records parsed from one line's fetch."""

    line_ref: str
    timestamp: str
    vehicles: list[VehicleRecord] = Field(default_factory=list)

    def log_entries(self) -> list[dict[str, Any]]:
        """Build one log entry per vehicle with batch metadata merged in."""
        entries: list[dict[str, Any]] = []
        for vehicle in self.vehicles:
            entry: dict[str, Any] = {"timestamp": self.timestamp, "line_ref": self.line_ref}
            for key, value in vehicle.to_log_fields().items():
                entry.setdefault(key, value)
            entries.append(entry)
        return entries

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_ref": self.line_ref,
            "timestamp": self.timestamp,
            "vehicle_activities": [v.to_log_fields() for v in self.vehicles],
        }


@dataclass(frozen=True)
class FeedPayload:
    """Raw XML fetched for one line in one cycle."""

    line_ref: str
    xml_data: bytes
    fetched_at: datetime


def format_batch_timestamp(moment: datetime) -> str:
    """Format a capture time as ISO-8601 UTC with milliseconds, e.g. 2024-01-15T10:30:00.000Z."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
