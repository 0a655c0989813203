"""Tests for start-time normalization, the export request, and the upstream payload model."""
import dataclasses
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from activity_export.analysis.streams import build_stream_bundle
from activity_export.errors import (
    InsufficientDataError,
    InvalidStreamError,
    InvalidTimestampError,
)
from activity_export.models.request import (
    ActivityExportRequest,
    ActivityPayload,
    normalize_start_time,
)

from conftest import START

LATLNG = [[51.5, -0.1], [51.501, -0.1005], [51.502, -0.101]]


class TestNormalizeStartTime:
    @pytest.mark.parametrize("text", [
        "2024-01-01T00:00:00Z",
        "2024-01-01T00:00:00+00:00",
        "2024-01-01T01:00:00+01:00",
        "2024-01-01T00:00:00",
    ])
    def test_iso_strings(self, text):
        assert normalize_start_time(text) == START

    def test_result_is_aware_utc(self):
        result = normalize_start_time(datetime(2024, 1, 1, 3, 0, tzinfo=timezone(timedelta(hours=3))))
        assert result == START
        assert result.utcoffset() == timedelta(0)

    def test_naive_datetime_taken_as_utc(self):
        assert normalize_start_time(datetime(2024, 1, 1)) == START

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2024-13-01T00:00:00Z", 1704067200])
    def test_invalid(self, value):
        with pytest.raises(InvalidTimestampError):
            normalize_start_time(value)

    def test_before_fit_epoch(self):
        with pytest.raises(InvalidTimestampError):
            normalize_start_time(datetime(1989, 12, 30, tzinfo=timezone.utc))

    def test_beyond_uint32_range(self):
        with pytest.raises(InvalidTimestampError):
            normalize_start_time(datetime(2200, 1, 1, tzinfo=timezone.utc))


class TestActivityExportRequest:
    def test_start_time_normalized(self):
        request = ActivityExportRequest(
            activity_name="Ride",
            start_time_utc="2024-01-01T00:00:00Z",
            streams=build_stream_bundle(LATLNG),
        )
        assert request.start_time_utc == START
        assert request.sport == 2
        assert request.sub_sport == 0

    def test_invalid_start_time(self):
        with pytest.raises(InvalidTimestampError):
            ActivityExportRequest(activity_name="Ride", start_time_utc=None, streams=build_stream_bundle(LATLNG))

    def test_immutable(self, london_request):
        with pytest.raises(dataclasses.FrozenInstanceError):
            london_request.activity_name = "Other"


class TestActivityPayload:
    def _payload(self, **overrides):
        raw = {
            "id": 98765,
            "name": "Trail Run",
            "start_date": "2024-01-01T00:00:00Z",
            "sport_type": "TrailRun",
            "calories": 321.0,
            "streams": {
                "latlng": {"data": LATLNG},
                "time": {"data": [0, 10, 20]},
                "altitude": [50, 55, 53],
                "heartrate": {"data": [140, 150, 160]},
            },
        }
        raw.update(overrides)
        return ActivityPayload.model_validate(raw)

    def test_to_request(self, settings):
        request = self._payload().to_request(settings=settings)
        assert request.activity_name == "Trail Run"
        assert request.start_time_utc == START
        assert (request.sport, request.sub_sport) == (1, 3)
        assert request.calories == 321.0
        bundle = request.streams
        assert len(bundle) == 3
        assert bundle.elapsed_seconds == (0.0, 10.0, 20.0)
        assert bundle.altitude_meters == (50.0, 55.0, 53.0)
        assert bundle.heart_rate_bpm == (140.0, 150.0, 160.0)
        assert bundle.cadence_rpm is None

    def test_sport_override(self, settings):
        request = self._payload().to_request(settings=settings, sport_override="Ride")
        assert request.sport == 2

    def test_missing_sport_uses_default(self, settings):
        request = self._payload(sport_type=None).to_request(settings=settings)
        assert request.sport == settings.default_sport

    def test_numeric_sport(self, settings):
        assert self._payload(sport_type=17).to_request(settings=settings).sport == 17

    def test_malformed_optional_stream_dropped(self, settings):
        streams = {"latlng": LATLNG, "time": [0, "soon", 20], "watts": [100, 200]}
        request = self._payload(streams=streams).to_request(settings=settings)
        assert request.streams.elapsed_seconds is None
        assert request.streams.power_watts is None

    def test_null_samples_keep_stream(self, settings):
        streams = {"latlng": LATLNG, "heartrate": {"data": [140, None, 160]}}
        request = self._payload(streams=streams).to_request(settings=settings)
        assert request.streams.heart_rate_bpm == (140.0, None, 160.0)

    def test_missing_latlng(self, settings):
        with pytest.raises(InsufficientDataError):
            self._payload(streams={"time": [0, 1]}).to_request(settings=settings)

    def test_malformed_latlng(self, settings):
        with pytest.raises(InvalidStreamError):
            self._payload(streams={"latlng": [[51.5], [51.6]]}).to_request(settings=settings)

    def test_missing_start_date(self, settings):
        with pytest.raises(InvalidTimestampError):
            self._payload(start_date=None).to_request(settings=settings)

    def test_defaults(self):
        payload = ActivityPayload.model_validate({})
        assert payload.name == ""
        assert payload.streams == {}

    def test_wrong_shape_rejected(self):
        with pytest.raises(ValidationError):
            ActivityPayload.model_validate({"streams": [1, 2, 3]})
