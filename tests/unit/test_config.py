"""Unit tests for RunConfiguration validation and wire mapping."""

from __future__ import annotations

from dataclasses import replace

import pytest

from trafficshaper.core.config import Pattern, RunConfiguration
from trafficshaper.core.exceptions import ConfigurationError


class TestRunConfigurationDefaults:
    """Tests for the stock configuration."""

    def test_defaults_are_valid(self, default_config: RunConfiguration) -> None:
        assert default_config.validate() is default_config
        assert default_config.pattern is Pattern.BELL
        assert default_config.packet_size_bytes == 1400

    def test_immutability(self, default_config: RunConfiguration) -> None:
        with pytest.raises(AttributeError):
            default_config.target_port = 9999  # type: ignore[misc]


class TestValidation:
    """Range checks on each field."""

    @pytest.mark.parametrize(
        ("changes", "field"),
        [
            ({"duration_seconds": 0}, "duration"),
            ({"duration_seconds": 3601}, "duration"),
            ({"duration_seconds": 1.5}, "duration"),
            ({"max_bandwidth_mbps": 0}, "maxBandwidth"),
            ({"max_bandwidth_mbps": -1.0}, "maxBandwidth"),
            ({"max_bandwidth_mbps": float("nan")}, "maxBandwidth"),
            ({"max_bandwidth_mbps": 20_000}, "maxBandwidth"),
            ({"target_port": 0}, "targetPort"),
            ({"target_port": 70000}, "targetPort"),
            ({"target_port": True}, "targetPort"),
            ({"bell_peak_ratio": 1.2}, "bellPeakRatio"),
            ({"packet_size_bytes": 32}, "packetSize"),
            ({"packet_size_bytes": 9001}, "packetSize"),
            ({"target_host": ""}, "targetIP"),
            ({"target_host": "bad host!"}, "targetIP"),
        ],
    )
    def test_out_of_range_rejected(self, changes: dict[str, object], field: str) -> None:
        config = replace(RunConfiguration(), **changes)
        with pytest.raises(ConfigurationError) as excinfo:
            config.validate()
        assert excinfo.value.field == field

    @pytest.mark.parametrize("host", ["10.0.0.2", "::1", "localhost", "load-target.lab.example"])
    def test_accepts_ip_literals_and_names(self, host: str) -> None:
        replace(RunConfiguration(), target_host=host).validate()

    def test_boundaries_accepted(self) -> None:
        replace(
            RunConfiguration(),
            duration_seconds=3600,
            target_port=65535,
            bell_peak_ratio=0.0,
            packet_size_bytes=64,
        ).validate()


class TestWireMapping:
    """Tests for to_dict/from_dict."""

    def test_to_dict_uses_client_field_names(self, default_config: RunConfiguration) -> None:
        data = default_config.to_dict()
        assert data == {
            "pattern": "bell",
            "duration": 60,
            "maxBandwidth": 100.0,
            "targetIP": "127.0.0.1",
            "targetPort": 8080,
            "bellPeakRatio": 0.5,
            "packetSize": 1400,
        }

    def test_partial_payload_merges_onto_base(self, default_config: RunConfiguration) -> None:
        config = RunConfiguration.from_dict(
            {"pattern": "Constant", "duration": 5, "extra": "ignored"},
            base=default_config,
        )
        assert config.pattern is Pattern.CONSTANT
        assert config.duration_seconds == 5
        assert config.packet_size_bytes == default_config.packet_size_bytes

    def test_unknown_pattern(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown pattern") as excinfo:
            RunConfiguration.from_dict({"pattern": "sawtooth"})
        assert excinfo.value.field == "pattern"

    def test_non_mapping_payload(self) -> None:
        with pytest.raises(ConfigurationError, match="JSON object"):
            RunConfiguration.from_dict(["constant"])  # type: ignore[arg-type]

    def test_port_70000_reports_field(self) -> None:
        with pytest.raises(ConfigurationError) as excinfo:
            RunConfiguration.from_dict({"targetPort": 70000})
        assert excinfo.value.to_dict()["field"] == "targetPort"
        assert "70000" in str(excinfo.value)

    def test_error_text_matches_wire_body(self) -> None:
        with pytest.raises(ConfigurationError) as excinfo:
            RunConfiguration.from_dict({"targetPort": 70000})
        error = excinfo.value
        assert str(error) == "targetPort: Value out of range [1, 65535] (value=70000)"
        assert error.to_dict() == {
            "error": "Value out of range [1, 65535]",
            "field": "targetPort",
            "details": {"value": 70000},
        }

    def test_error_without_field_or_details(self) -> None:
        error = ConfigurationError("Request body must be a JSON object")
        assert str(error) == "Request body must be a JSON object"
        assert error.to_dict() == {"error": "Request body must be a JSON object", "field": None}
