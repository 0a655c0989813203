"""
Tests for the FIT activity encoder.

Every file is decoded back with fitparse (CRC checked) so the assertions are
about what a real FIT consumer sees, not about our own byte layout.
"""
from datetime import timedelta

import pytest

from activity_export.analysis.geodesy import degrees_to_fit_semicircles
from activity_export.analysis.streams import StreamBundle, build_stream_bundle
from activity_export.errors import EncodingInternalError, InsufficientDataError
from activity_export.fit.encoder import encode_fit
from activity_export.models.request import ActivityExportRequest

from conftest import START, decode_fit, make_track, messages_named, naive_utc

UTC = timedelta(0)


def _request(bundle, **kwargs) -> ActivityExportRequest:
    kwargs.setdefault("activity_name", "Test activity")
    kwargs.setdefault("start_time_utc", START)
    return ActivityExportRequest(streams=bundle, **kwargs)


class TestLondonRide:
    """Two points in London, 10 s apart, 5 m climb."""

    @pytest.fixture(name="messages")
    def messages_fixture(self, london_request, settings):
        return decode_fit(encode_fit(london_request, settings=settings, utc_offset=UTC))

    def test_message_order(self, messages):
        assert [m.name for m in messages] == [
            "file_id",
            "device_info",
            "event",
            "record",
            "record",
            "event",
            "lap",
            "session",
            "activity",
        ]

    def test_file_id(self, messages):
        file_id = messages_named(messages, "file_id")[0]
        assert file_id["type"] == "activity"
        assert file_id["serial_number"] == 12345
        assert naive_utc(file_id["time_created"]) == naive_utc(START)

    def test_device_info(self, messages):
        info = messages_named(messages, "device_info")[0]
        assert info["product_name"] == "Activity Export"
        assert info["software_version"] == pytest.approx(1.0)
        assert info["serial_number"] == 12345

    def test_timer_events(self, messages):
        start, stop = messages_named(messages, "event")
        assert (start["event"], start["event_type"]) == ("timer", "start")
        assert (stop["event"], stop["event_type"]) == ("timer", "stop")
        assert naive_utc(stop["timestamp"]) == naive_utc(START + timedelta(seconds=10))

    def test_session_totals(self, messages):
        session = messages_named(messages, "session")[0]
        assert session["sport"] == "cycling"
        assert session["total_elapsed_time"] == pytest.approx(10.0)
        assert session["total_timer_time"] == pytest.approx(10.0)
        assert session["total_ascent"] == 5
        assert session["total_distance"] == pytest.approx(116.46, abs=0.5)
        assert session["num_laps"] == 1
        assert session["first_lap_index"] == 0
        assert session["trigger"] == "activity_end"

    def test_lap_matches_session(self, messages):
        lap = messages_named(messages, "lap")[0]
        session = messages_named(messages, "session")[0]
        for key in ("total_elapsed_time", "total_distance", "total_ascent", "avg_speed", "max_speed"):
            assert lap[key] == session[key]
        assert lap["lap_trigger"] == "session_end"
        assert lap["end_position_lat"] == degrees_to_fit_semicircles(51.501)

    def test_records(self, messages):
        first, second = messages_named(messages, "record")
        assert first["position_lat"] == degrees_to_fit_semicircles(51.5)
        assert first["position_long"] == degrees_to_fit_semicircles(-0.1)
        assert first["distance"] == 0.0
        assert first["enhanced_altitude"] == pytest.approx(50.0)
        assert second["enhanced_altitude"] == pytest.approx(55.0)
        assert second["distance"] == pytest.approx(116.46, abs=0.5)
        assert naive_utc(second["timestamp"]) == naive_utc(START + timedelta(seconds=10))

    def test_record_distance_matches_session_total(self, messages):
        last_record = messages_named(messages, "record")[-1]
        session = messages_named(messages, "session")[0]
        assert last_record["distance"] == session["total_distance"]

    def test_activity(self, messages):
        activity = messages_named(messages, "activity")[0]
        assert activity["num_sessions"] == 1
        assert activity["total_timer_time"] == pytest.approx(10.0)


class TestRoundTrip:
    @pytest.mark.parametrize("n", [2, 3, 100, 10000])
    def test_decodes_with_one_record_per_sample(self, n, settings):
        bundle = build_stream_bundle(
            make_track(n),
            elapsed_seconds=list(range(n)),
            altitude_meters=[100 + (i % 7) for i in range(n)],
        )
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        records = messages_named(messages, "record")
        assert len(records) == n
        assert len(messages_named(messages, "lap")) == 1
        assert len(messages_named(messages, "session")) == 1
        distances = [r["distance"] for r in records]
        assert all(b >= a for a, b in zip(distances, distances[1:]))

    def test_deterministic(self, london_request, settings):
        first = encode_fit(london_request, settings=settings, utc_offset=UTC)
        second = encode_fit(london_request, settings=settings, utc_offset=UTC)
        assert first == second


class TestMinimumPoints:
    def test_single_point_rejected(self, settings):
        request = _request(StreamBundle(positions=((51.5, -0.1),)))
        with pytest.raises(InsufficientDataError):
            encode_fit(request, settings=settings)


class TestOptionalStreams:
    def test_sensor_fields_written(self, settings):
        bundle = build_stream_bundle(
            make_track(3),
            elapsed_seconds=[0, 1, 2],
            heart_rate_bpm=[120, 0, 130.4],
            cadence_rpm=[80, 85, 90],
            power_watts=[200, 210.6, 220],
        )
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        records = messages_named(messages, "record")
        assert [r["heart_rate"] for r in records] == [120, 0, 130]
        assert [r["cadence"] for r in records] == [80, 85, 90]
        assert [r["power"] for r in records] == [200, 211, 220]

        session = messages_named(messages, "session")[0]
        assert session["avg_heart_rate"] == 125

    def test_gaps_in_sensor_streams(self, settings):
        bundle = build_stream_bundle(
            make_track(3),
            elapsed_seconds=[0, 1, 2],
            altitude_meters=[10, None, 15],
            heart_rate_bpm=[120, None, 130],
        )
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        records = messages_named(messages, "record")
        assert len(records) == 3
        assert records[0]["heart_rate"] == 120
        assert records[1].get("heart_rate") is None
        assert records[1].get("enhanced_altitude") is None
        assert records[2]["enhanced_altitude"] == pytest.approx(15.0)

        session = messages_named(messages, "session")[0]
        assert session["avg_heart_rate"] == 125
        # no consecutive pair of altitude samples, so nothing climbed
        assert session["total_ascent"] == 0

    def test_absent_streams_leave_fields_out(self, settings):
        bundle = build_stream_bundle(make_track(3))
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        record = messages_named(messages, "record")[1]
        for key in ("heart_rate", "cadence", "power", "enhanced_altitude", "speed"):
            assert record.get(key) is None
        session = messages_named(messages, "session")[0]
        assert session.get("total_ascent") is None
        assert session.get("avg_heart_rate") is None

    def test_no_time_stream_uses_one_second_per_sample(self, settings):
        bundle = build_stream_bundle(make_track(5))
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        records = messages_named(messages, "record")
        assert naive_utc(records[4]["timestamp"]) == naive_utc(START + timedelta(seconds=4))
        session = messages_named(messages, "session")[0]
        assert session["total_elapsed_time"] == pytest.approx(4.0)

    def test_speed_from_velocity_stream(self, settings):
        bundle = build_stream_bundle(make_track(3), elapsed_seconds=[0, 1, 2], velocity_mps=[3.5, 4.25, 5.0])
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        records = messages_named(messages, "record")
        assert [r["speed"] for r in records] == pytest.approx([3.5, 4.25, 5.0])
        assert messages_named(messages, "session")[0]["max_speed"] == pytest.approx(5.0)

    def test_out_of_range_sensor_value_still_decodes(self, settings):
        bundle = build_stream_bundle(make_track(2), heart_rate_bpm=[300, 140])
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        records = messages_named(messages, "record")
        assert records[0].get("heart_rate") is None
        assert records[1]["heart_rate"] == 140


class TestPositions:
    def test_antimeridian_longitude_folded(self, settings):
        bundle = build_stream_bundle([(0.0, 180.0), (0.0, 179.9999)])
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        first = messages_named(messages, "record")[0]
        assert first["position_long"] == -(2**31)

    def test_southern_western_hemisphere(self, settings):
        bundle = build_stream_bundle([(-33.8688, -70.6693), (-33.8689, -70.6694)])
        messages = decode_fit(encode_fit(_request(bundle), settings=settings, utc_offset=UTC))
        first = messages_named(messages, "record")[0]
        assert first["position_lat"] == degrees_to_fit_semicircles(-33.8688)
        assert first["position_long"] == degrees_to_fit_semicircles(-70.6693)


class TestSport:
    def test_sub_sport_written(self, settings):
        bundle = build_stream_bundle(make_track(2))
        messages = decode_fit(encode_fit(_request(bundle, sport=1, sub_sport=3), settings=settings, utc_offset=UTC))
        session = messages_named(messages, "session")[0]
        assert session["sport"] == "running"
        assert session["sub_sport"] == "trail"

    def test_unknown_sport_written_as_generic(self, settings):
        bundle = build_stream_bundle(make_track(2))
        messages = decode_fit(encode_fit(_request(bundle, sport=999), settings=settings, utc_offset=UTC))
        assert messages_named(messages, "session")[0]["sport"] == "generic"


class TestLocalTimestamp:
    def test_offset_applied(self, london_request, settings):
        data = encode_fit(london_request, settings=settings, utc_offset=timedelta(hours=2))
        activity = [m for m in decode_fit(data) if m.name == "activity"][0]
        # raw values: fitparse converts local_timestamp using the host timezone
        timestamp = activity.get("timestamp").raw_value
        local = activity.get("local_timestamp").raw_value
        assert local - timestamp == 7200


class TestInternalErrors:
    def test_unexpected_failure_wrapped(self, london_request, settings, monkeypatch):
        def explode(_bundle):
            raise RuntimeError("boom")

        monkeypatch.setattr("activity_export.fit.encoder.aggregate", explode)
        with pytest.raises(EncodingInternalError):
            encode_fit(london_request, settings=settings, utc_offset=UTC)

    def test_failed_self_check_returns_nothing(self, london_request, settings, monkeypatch):
        monkeypatch.setattr("activity_export.fit.encoder.verify_fit_bytes", lambda data: "file CRC mismatch")
        with pytest.raises(EncodingInternalError, match="self-check"):
            encode_fit(london_request, settings=settings, utc_offset=UTC)
