"""Test metric identity keys and environment-driven settings.

Run from the repo root:
    python3 tests/test_config.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

import contextlib
import tempfile

import pytest

from scadaview.config import DEFAULT_API_URL, get_settings
from scadaview.errors import ConfigurationError
from scadaview.identity import (MetricIdentifier, MetricInfo, is_boolean_type,
                                metric_key, parse_metric_key)

ENV_VARS = ("ANYWHERESCADA_API_KEY", "ANYWHERESCADA_API_URL", "ANYWHERESCADA_WS_URL",
            "SCADAVIEW_TICK_INTERVAL", "SCADAVIEW_REQUEST_TIMEOUT", "SCADAVIEW_ENV_FILE")


@contextlib.contextmanager
def clean_env(**values):
    """Run with only *values* set among the scadaview variables."""
    saved = {name: os.environ.pop(name, None) for name in ENV_VARS}
    os.environ.update(values)
    try:
        yield
    finally:
        for name in ENV_VARS:
            os.environ.pop(name, None)
            if saved[name] is not None:
                os.environ[name] = saved[name]


def test_metric_keys():
    print("test_metric_keys...", end="")

    m = MetricIdentifier("plant", "line1", "pump", "flow")
    assert metric_key(m) == "plant/line1/pump/flow"
    assert parse_metric_key(m.key) == m

    node_level = MetricIdentifier("plant", "line1", "", "running")
    assert node_level.key == "plant/line1//running"
    assert parse_metric_key(node_level.key) == node_level

    # Display metadata does not change identity
    info = MetricInfo("plant", "line1", "pump", "flow", name="Flow", type="Float")
    assert info.key == m.key
    assert info.identifier == m

    with pytest.raises(ValueError):
        parse_metric_key("plant/line1/flow")

    print(" OK")


def test_payload_shape():
    print("test_payload_shape...", end="")

    m = MetricIdentifier.from_payload({"groupId": "g", "nodeId": "n",
                                       "deviceId": None, "metricId": "m"})
    assert m == MetricIdentifier("g", "n", "", "m")
    assert m.to_payload() == {"groupId": "g", "nodeId": "n",
                              "deviceId": "", "metricId": "m"}
    with pytest.raises(KeyError):
        MetricIdentifier.from_payload({"groupId": "g"})

    assert is_boolean_type("Boolean")
    assert not is_boolean_type("Float")

    print(" OK")


def test_settings_from_env_file():
    """Values come from the env file unless the real environment has them."""
    print("test_settings_from_env_file...", end="")

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, ".env")
        with open(path, "w") as f:
            f.write("ANYWHERESCADA_API_KEY=from-file\n"
                    "SCADAVIEW_TICK_INTERVAL=0.5\n")

        with clean_env(SCADAVIEW_REQUEST_TIMEOUT="12"):
            s = get_settings(path)
            assert s.api_key == "from-file"
            assert s.tick_interval == 0.5
            assert s.request_timeout == 12.0
            assert s.api_url == DEFAULT_API_URL
            assert s.require_api_key() == "from-file"

        with clean_env(ANYWHERESCADA_API_KEY="from-env"):
            assert get_settings(path).api_key == "from-env"

    print(" OK")


def test_settings_validation():
    print("test_settings_validation...", end="")

    missing = os.path.join(os.path.dirname(__file__), "no-such.env")
    with clean_env():
        s = get_settings(missing)
        assert s.api_key is None
        assert s.tick_interval == 1.0
        with pytest.raises(ConfigurationError):
            s.require_api_key()

    with clean_env(SCADAVIEW_TICK_INTERVAL="fast"):
        with pytest.raises(ConfigurationError):
            get_settings(missing)
    with clean_env(SCADAVIEW_REQUEST_TIMEOUT="-1"):
        with pytest.raises(ConfigurationError):
            get_settings(missing)

    print(" OK")


if __name__ == "__main__":
    print("scadaview config tests")
    print("======================\n")

    test_metric_keys()
    test_payload_shape()
    test_settings_from_env_file()
    test_settings_validation()

    print("\nAll tests passed.")
