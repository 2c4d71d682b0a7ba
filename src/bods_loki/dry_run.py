"""Console output used instead of Loki when running with --dry-run."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

from bods_loki.loki import encode_log_line

if TYPE_CHECKING:
    from bods_loki.models import ParsedBatch


class DryRunPrinter:
    """Writes a readable summary and the would-be Loki log lines for a batch."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so pytest's capsys sees the output.
        return self._stream or sys.stdout

    def print_batch(self, batch: ParsedBatch) -> None:
        out = self.stream
        out.write(f"\n=== DRY RUN - Bus Data for Line {batch.line_ref} ===\n")
        out.write(f"Timestamp: {batch.timestamp}\n")
        out.write(f"Vehicles Found: {len(batch.vehicles)}\n")

        if batch.vehicles:
            out.write("\nVehicle Summary:\n")
            for i, vehicle in enumerate(batch.vehicles, 1):
                route = ""
                if vehicle.origin_name and vehicle.destination_name:
                    route = f" ({vehicle.origin_name} → {vehicle.destination_name})"
                out.write(
                    f"  {i}. Vehicle: {vehicle.vehicle_id}, Direction: {vehicle.direction}, "
                    f"Location: ({vehicle.latitude:.6f}, {vehicle.longitude:.6f}){route}\n"
                )

        out.write("\nIndividual Log Lines (as sent to Loki):\n")
        out.write("----------------------------------------\n")
        for entry in batch.log_entries():
            out.write(encode_log_line(entry) + "\n")
        out.write("=== END DRY RUN ===\n")
        out.flush()
