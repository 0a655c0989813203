"""Shared test fixtures."""
import io
from datetime import datetime, timezone
from typing import Any, Dict, List

import fitparse
import pytest

from activity_export.analysis.streams import build_stream_bundle
from activity_export.config import Settings
from activity_export.models.request import ActivityExportRequest

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Explicit settings so tests never depend on the environment or a .env file."""
    return Settings(
        _env_file=None,
        manufacturer_id=255,
        product_id=1,
        serial_number=12345,
        product_name="Activity Export",
        software_version=1.0,
        default_activity_name="Exported activity",
        default_sport=2,
        filename_prefix="activity",
    )


@pytest.fixture(name="london_request")
def london_request_fixture() -> ActivityExportRequest:
    """Two-point ride in London: 10 s, 5 m climb."""
    bundle = build_stream_bundle(
        [(51.5, -0.1), (51.501, -0.1005)],
        elapsed_seconds=[0, 10],
        altitude_meters=[50, 55],
    )
    return ActivityExportRequest(
        activity_name="Morning Ride",
        start_time_utc=START,
        streams=bundle,
        sport=2,
    )


def make_track(n: int, step_deg: float = 0.0001) -> List[tuple]:
    """n points heading north-east from Seattle."""
    return [(47.6 + i * step_deg, -122.3 + i * step_deg) for i in range(n)]


def decode_fit(data: bytes) -> List[Any]:
    """Decode every data message with fitparse (CRC checked)."""
    fit = fitparse.FitFile(io.BytesIO(data), check_crc=True)
    return list(fit.get_messages())


def messages_named(messages: List[Any], name: str) -> List[Dict[str, Any]]:
    return [m.get_values() for m in messages if m.name == name]


def naive_utc(dt: datetime) -> datetime:
    """fitparse may hand back naive or aware datetimes depending on version."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
