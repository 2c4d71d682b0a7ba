"""SIRI-VM XML parser: raw feed payloads to vehicle records."""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from bods_loki.errors import ErrorKind, PipelineError
from bods_loki.icons import compact_bus_image
from bods_loki.logging import get_logger
from bods_loki.models import ParsedBatch, StopCall, VehicleRecord, format_batch_timestamp
from bods_loki.xml_tree import XmlElement, XmlSyntaxError, element, elements, parse_document, path, text

if TYPE_CHECKING:
    from collections.abc import Callable

    import structlog

logger = get_logger(__name__)

VEHICLE_ACTIVITY_PATH = ("Siri", "ServiceDelivery", "VehicleMonitoringDelivery")

_LEADING_INT = re.compile(r"[+-]?\d+")
_LEADING_FLOAT = re.compile(r"[+-]?(?:[\d_]+(?:\.[\d_]*)?|\.[\d_]+)(?:[eE][+-]?[\d_]+)?")


class ParseError(PipelineError):
    """Raised when a feed payload is not well-formed XML."""

    kind = ErrorKind.PARSE_FAILED


def format_stop_name(name: str) -> str:
    """Clean up a BODS stop name.

    Double underscores become `` - `` and remaining single underscores become
    spaces, so ``Lyde_Green__Science_Park`` reads ``Lyde Green - Science Park``.
    """
    if not name:
        return ""
    return name.replace("__", " - ").replace("_", " ")


def parse_float(value: str | None) -> float:
    """Parse the leading number of a textual value, returning 0.0 on failure.

    Trailing text after the number is ignored, so ``45.5deg`` reads 45.5.
    Non-finite results also come back as 0.0.
    """
    if value is None:
        return 0.0
    match = _LEADING_FLOAT.match(value.strip())
    # digit separators are scanned as part of the number but never parse
    if match is None or "_" in match.group():
        return 0.0
    result = float(match.group())
    return result if math.isfinite(result) else 0.0


def parse_int(value: str | None) -> int:
    """Parse the leading integer of a textual value, returning 0 on failure."""
    if value is None:
        return 0
    match = _LEADING_INT.match(value.strip())
    return int(match.group()) if match else 0


class SiriVmParser:
    """Converts one line's SIRI-VM payload into a ParsedBatch."""

    def __init__(
        self,
        image_generator: Callable[[str, str], str] = compact_bus_image,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._image_generator = image_generator
        self._log = log or logger

    def parse(
        self,
        raw_xml: bytes | str,
        line_ref: str,
        capture_time: datetime | None = None,
    ) -> ParsedBatch:
        """Parse a SIRI-VM document.

        Args:
            raw_xml: The feed body as fetched.
            line_ref: Line the payload was fetched for.
            capture_time: When the payload was captured; defaults to now.

        Returns:
            ParsedBatch with zero or more vehicle records.

        Raises:
            ParseError: If the payload is not well-formed XML.
        """
        try:
            document = parse_document(raw_xml)
        except XmlSyntaxError as exc:
            msg = f"failed to parse XML for line {line_ref}: {exc}"
            self._log.warning(
                "Malformed SIRI-VM payload",
                line_ref=line_ref,
                size_bytes=len(raw_xml),
                error=str(exc),
            )
            raise ParseError(msg, line_ref=line_ref) from exc

        vehicles = self.extract_vehicle_activities(document)
        captured = capture_time or datetime.now(timezone.utc)

        self._log.debug(
            "SIRI-VM payload parsed",
            line_ref=line_ref,
            size_bytes=len(raw_xml),
            vehicles_count=len(vehicles),
        )
        return ParsedBatch(
            line_ref=line_ref,
            timestamp=format_batch_timestamp(captured),
            vehicles=vehicles,
        )

    def extract_vehicle_activities(self, document: XmlElement) -> list[VehicleRecord]:
        """Find every VehicleActivity in a document; missing envelopes mean none."""
        delivery = path(document, *VEHICLE_ACTIVITY_PATH)
        return [self.parse_vehicle_activity(item) for item in elements(delivery, "VehicleActivity")]

    def parse_vehicle_activity(self, activity: XmlElement) -> VehicleRecord:
        record = VehicleRecord(
            recorded_at=text(activity, "RecordedAtTime") or "",
            valid_until=text(activity, "ValidUntilTime") or "",
        )

        journey = element(activity, "MonitoredVehicleJourney")
        if journey is None:
            return record

        record.line_ref = text(journey, "LineRef") or ""
        record.direction = text(journey, "DirectionRef") or ""
        record.operator_ref = text(journey, "OperatorRef") or ""
        record.vehicle_id = text(journey, "VehicleRef") or ""
        if not record.vehicle_id:
            framed = element(journey, "FramedVehicleJourneyRef")
            record.vehicle_id = text(framed, "DatedVehicleJourneyRef") or ""

        record.origin_ref = text(journey, "OriginRef") or ""
        record.origin_name = format_stop_name(text(journey, "OriginName") or "")
        record.destination_ref = text(journey, "DestinationRef") or ""
        record.destination_name = format_stop_name(text(journey, "DestinationName") or "")
        record.origin_departure_time = text(journey, "OriginAimedDepartureTime") or ""
        record.destination_arrival_time = text(journey, "DestinationAimedArrivalTime") or ""

        location = element(journey, "VehicleLocation")
        record.longitude = parse_float(text(location, "Longitude"))
        record.latitude = parse_float(text(location, "Latitude"))

        record.bearing = parse_float(text(journey, "Bearing"))
        record.velocity = parse_float(text(journey, "Velocity"))
        record.occupancy = text(journey, "Occupancy") or ""
        record.progress_status = text(journey, "ProgressStatus") or ""
        record.published_line_name = text(journey, "PublishedLineName") or ""
        record.block_ref = text(journey, "BlockRef") or ""

        record.monitored_call = self.parse_stop_call(element(journey, "MonitoredCall"))
        record.onward_calls = self.parse_onward_calls(element(journey, "OnwardCalls"))

        record.bus_image = self._image_generator(record.line_ref, record.direction)
        return record

    @staticmethod
    def parse_stop_call(call: XmlElement | None) -> StopCall | None:
        """Build a StopCall, or None when it names no stop."""
        if call is None:
            return None
        stop_call = StopCall(
            stop_point_ref=text(call, "StopPointRef") or "",
            stop_point_name=format_stop_name(text(call, "StopPointName") or ""),
            visit_number=parse_int(text(call, "VisitNumber")),
            aimed_arrival_time=text(call, "AimedArrivalTime") or "",
            expected_arrival_time=text(call, "ExpectedArrivalTime") or "",
            aimed_departure_time=text(call, "AimedDepartureTime") or "",
            expected_departure_time=text(call, "ExpectedDepartureTime") or "",
        )
        return None if stop_call.is_empty else stop_call

    @classmethod
    def parse_onward_calls(cls, onward: XmlElement | None) -> list[StopCall]:
        calls: list[StopCall] = []
        for item in elements(onward, "OnwardCall"):
            stop_call = cls.parse_stop_call(item)
            if stop_call is not None:
                calls.append(stop_call)
        return calls
