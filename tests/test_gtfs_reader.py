"""Tests for GtfsZipReader - ZIP extraction and required file validation."""

from __future__ import annotations

import zipfile

import pytest

from transit_planner.services.gtfs_static.reader import (
    GtfsZipReader,
    MissingRequiredFileError,
)

from .fixtures.gtfs_fixture import STOPS_TXT, build_gtfs_zip


class TestGtfsZipReader:
    """Tests for ZIP reader validation and file extraction."""

    def test_valid_zip_opens_successfully(self) -> None:
        with GtfsZipReader(build_gtfs_zip()) as reader:
            files = reader.list_files()
        for name in ("stops.txt", "routes.txt", "trips.txt", "stop_times.txt", "calendar.txt"):
            assert name in files

    def test_missing_required_file_raises(self) -> None:
        zip_bytes = build_gtfs_zip(exclude_files={"stops.txt"})
        with pytest.raises(MissingRequiredFileError, match=r"stops\.txt"):
            GtfsZipReader(zip_bytes)

    def test_missing_multiple_files_raises(self) -> None:
        zip_bytes = build_gtfs_zip(exclude_files={"stops.txt", "routes.txt"})
        with pytest.raises(MissingRequiredFileError, match="Missing required"):
            GtfsZipReader(zip_bytes)

    def test_optional_files_may_be_absent(self) -> None:
        zip_bytes = build_gtfs_zip(calendar=None, calendar_dates=None, feed_info=None)
        with GtfsZipReader(zip_bytes) as reader:
            assert not reader.has_file("calendar.txt")
            assert reader.has_file("stops.txt")

    def test_invalid_zip_bytes_raises(self) -> None:
        with pytest.raises(zipfile.BadZipFile):
            GtfsZipReader(b"not a zip file")

    def test_nested_folder_resolved_by_basename(self) -> None:
        zip_bytes = build_gtfs_zip(folder="king_county_metro")
        with GtfsZipReader(zip_bytes) as reader:
            assert reader.has_file("stop_times.txt")
            header = reader.open_file("stops.txt").readline()
        assert header.startswith("stop_id")

    def test_byte_order_mark_is_stripped(self) -> None:
        zip_bytes = build_gtfs_zip(stops="\ufeff" + STOPS_TXT)
        with GtfsZipReader(zip_bytes) as reader:
            header = reader.open_file("stops.txt").readline()
        assert header.startswith("stop_id,")

    def test_open_missing_optional_file_raises_key_error(self) -> None:
        zip_bytes = build_gtfs_zip(feed_info=None)
        with GtfsZipReader(zip_bytes) as reader, pytest.raises(KeyError):
            reader.open_file("feed_info.txt")
