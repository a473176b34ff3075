"""
Unit tests for request hooks and JSON logging
"""

import json
import logging
import os
import sys
from datetime import date, datetime, timezone
from unittest.mock import Mock

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.hooks import LoggingHooks
from common.logging_setup import JsonFormatter
from common.utils import to_iso_z
from tests.fakes import RecordingHooks


class TestCallContext:
    """Test cases for RequestHooks.call"""

    def test_success(self):
        """before/after both fire; a 2xx status is ok"""
        hooks = RecordingHooks()
        with hooks.call("gibs", "tile", url="u") as outcome:
            outcome["status"] = 200
        assert hooks.before == [("gibs", "tile")]
        provider, call, ok, info = hooks.after[0]
        assert (provider, call, ok) == ("gibs", "tile", True)
        assert info == {"url": "u", "status": 200}

    def test_error_status_not_ok(self):
        """A non-2xx status is reported as not ok"""
        hooks = RecordingHooks()
        with hooks.call("nasa", "assets") as outcome:
            outcome["status"] = 503
        assert hooks.after[0][2] is False

    def test_exception_still_reports(self):
        """after_call fires when the body raises, and the error propagates"""
        hooks = RecordingHooks()
        with pytest.raises(RuntimeError):
            with hooks.call("copernicus", "token"):
                raise RuntimeError("boom")
        assert hooks.after[0][:3] == ("copernicus", "token", False)


class TestLoggingHooks:
    """Test cases for LoggingHooks"""

    def test_after_call_levels(self):
        """ok calls log at INFO, failures at WARNING"""
        logger = Mock()
        hooks = LoggingHooks(logger)
        hooks.after_call("gibs", "tile", 12.34, True, status=200)
        hooks.after_call("gibs", "tile", 5.0, False, status=500)
        (lvl_ok, _), kw_ok = logger.log.call_args_list[0]
        (lvl_bad, _), _ = logger.log.call_args_list[1]
        assert lvl_ok == logging.INFO
        assert lvl_bad == logging.WARNING
        assert kw_ok["extra"]["extra"]["elapsed_ms"] == 12.3
        assert kw_ok["extra"]["extra"]["status"] == 200

    def test_transition_serialises_request(self):
        """Requests are logged via to_dict()"""
        logger = Mock()
        request = Mock()
        request.to_dict.return_value = {"provider": "gibs"}
        LoggingHooks(logger).on_transition(request, "START")
        _, kwargs = logger.log.call_args
        assert kwargs["extra"]["extra"]["request"] == {"provider": "gibs"}
        assert kwargs["extra"]["extra"]["state"] == "START"


class TestJsonFormatter:
    """Test cases for JsonFormatter"""

    def test_format_with_extra(self):
        """One JSON object; dates are stringified"""
        record = logging.LogRecord("imagery.gibs", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.extra = {"resolved_date": date(2023, 1, 1)}
        payload = json.loads(JsonFormatter().format(record))
        assert payload["msg"] == "hello world"
        assert payload["lvl"] == "INFO"
        assert payload["name"] == "imagery.gibs"
        assert payload["extra"] == {"resolved_date": "2023-01-01"}
        assert payload["ts"] == to_iso_z(datetime.fromtimestamp(record.created, tz=timezone.utc))
        assert payload["ts"].endswith("Z")
