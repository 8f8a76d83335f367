"""GTFS ZIP reader - extracts and validates required files."""

from __future__ import annotations

import io
import zipfile

from transit_planner.logging import get_logger

logger = get_logger(__name__)

# Files the schedule index cannot be built without
REQUIRED_FILES = {"stops.txt", "routes.txt", "trips.txt", "stop_times.txt"}

# Service calendars and version metadata, used when present
OPTIONAL_FILES = {"calendar.txt", "calendar_dates.txt", "feed_info.txt", "agency.txt"}


class MissingRequiredFileError(Exception):
    """Raised when a required GTFS file is missing from the ZIP."""


class GtfsZipReader:
    """Opens and validates a GTFS ZIP archive.

    Feeds published with a single top-level folder are accepted; member
    names are resolved by basename.
    """

    def __init__(self, data: bytes) -> None:
        """Initialize reader with ZIP bytes.

        Raises:
            zipfile.BadZipFile: If data is not a valid ZIP.
            MissingRequiredFileError: If required files are missing.
        """
        self._zip = zipfile.ZipFile(io.BytesIO(data))
        self._members = {
            name.rsplit("/", 1)[-1]: name
            for name in self._zip.namelist()
            if not name.endswith("/")
        }
        self._validate_required_files()

    def _validate_required_files(self) -> None:
        missing = REQUIRED_FILES - self._members.keys()
        if missing:
            msg = f"Missing required GTFS files: {sorted(missing)}"
            raise MissingRequiredFileError(msg)

        logger.info(
            "GTFS ZIP validated",
            optional_present=sorted(OPTIONAL_FILES & self._members.keys()),
            total_files=len(self._members),
        )

    def has_file(self, filename: str) -> bool:
        return filename in self._members

    def open_file(self, filename: str) -> io.TextIOWrapper:
        """Open a file from the archive for text reading (BOM tolerant).

        Raises:
            KeyError: If the file is not in the archive.
        """
        binary_stream = self._zip.open(self._members[filename])
        return io.TextIOWrapper(binary_stream, encoding="utf-8-sig", newline="")

    def list_files(self) -> list[str]:
        return sorted(self._members)

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> GtfsZipReader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
