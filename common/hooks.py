from __future__ import annotations

"""
Request-scoped observation points.

Providers and the orchestrator report through a RequestHooks instance handed
to them at construction:

    on_transition(request, state, **info)          orchestrator state changes
    before_call(provider, call, **info)            before each upstream HTTP call
    after_call(provider, call, elapsed_ms, ok, **info)

The base class is a no-op. LoggingHooks writes JSON log lines; tests plug in
a recording double.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from common.logging_setup import get_logger, log_event


class RequestHooks:
    def on_transition(self, request: Any, state: str, **info: Any) -> None:
        pass

    def before_call(self, provider: str, call: str, **info: Any) -> None:
        pass

    def after_call(self, provider: str, call: str, elapsed_ms: float, ok: bool, **info: Any) -> None:
        pass

    @contextmanager
    def call(self, provider: str, call: str, **info: Any) -> Iterator[Dict[str, Any]]:
        """
        Time one upstream call. The yielded dict collects outcome fields
        (e.g. `status`) that are passed on to after_call().

            with hooks.call("gibs", "tile", url=url) as outcome:
                r = session.get(url)
                outcome["status"] = r.status_code
        """
        self.before_call(provider, call, **info)
        outcome: Dict[str, Any] = {}
        t0 = time.perf_counter()
        ok = False
        try:
            yield outcome
            status = outcome.get("status")
            ok = status is None or 200 <= int(status) < 300
        finally:
            elapsed_ms = (time.perf_counter() - t0) * 1e3
            self.after_call(provider, call, elapsed_ms, ok, **{**info, **outcome})


NOOP_HOOKS = RequestHooks()


class LoggingHooks(RequestHooks):
    """Forward every hook to a logger as a structured event."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or get_logger("imagery.requests")

    def on_transition(self, request: Any, state: str, **info: Any) -> None:
        req = request.to_dict() if hasattr(request, "to_dict") else request
        log_event(self.log, f"state {state}", state=state, request=req, **info)

    def before_call(self, provider: str, call: str, **info: Any) -> None:
        log_event(self.log, f"{provider} {call} start", level=logging.DEBUG, provider=provider, call=call, **info)

    def after_call(self, provider: str, call: str, elapsed_ms: float, ok: bool, **info: Any) -> None:
        log_event(
            self.log,
            f"{provider} {call} {'ok' if ok else 'failed'} in {elapsed_ms:.1f} ms",
            level=logging.INFO if ok else logging.WARNING,
            provider=provider,
            call=call,
            elapsed_ms=round(elapsed_ms, 1),
            ok=ok,
            **info,
        )
