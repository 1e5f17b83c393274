from __future__ import annotations

import json
import threading

import requests

from biometria.beacon.config import ReporterSettings
from biometria.beacon.measurement import Measurement
from biometria.beacon.reporter import MeasurementReporter, RestResponse


class FakeResponse:
    def __init__(self, status_code: int, text: str):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, response: FakeResponse | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[dict] = []
        self.closed = False

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


def make_reporter(session: FakeSession) -> MeasurementReporter:
    settings = ReporterSettings(url="http://gateway.test/api/medicion", timeout_sec=1.5, max_workers=1)
    return MeasurementReporter(settings, session=session)  # type: ignore[arg-type]


def test_post_body_and_response() -> None:
    session = FakeSession(FakeResponse(201, '{"success": true}'))
    reporter = make_reporter(session)
    try:
        result = reporter.submit(Measurement(kind_code=11, counter=3, value=200)).result(timeout=2.0)
    finally:
        reporter.close()
    assert result == RestResponse(status=201, body='{"success": true}')
    assert result.ok
    call = session.calls[0]
    assert call["url"] == "http://gateway.test/api/medicion"
    assert json.loads(call["data"].decode("utf-8")) == {"tipo": "gas", "valor": 200}
    assert call["headers"]["Content-Type"] == "application/json; charset=utf-8"
    assert call["timeout"] == 1.5
    assert session.closed


def test_empty_body_is_empty_string() -> None:
    session = FakeSession(FakeResponse(204, ""))
    reporter = make_reporter(session)
    try:
        result = reporter.submit(Measurement(12, 1, 21)).result(timeout=2.0)
    finally:
        reporter.close()
    assert result.body == ""
    assert result.status == 204


def test_transport_error_reported_once_without_retry() -> None:
    session = FakeSession(error=requests.ConnectionError("no route"))
    reporter = make_reporter(session)
    delivered: list[tuple[int, str]] = []
    done = threading.Event()

    def callback(status: int, body: str) -> None:
        delivered.append((status, body))
        done.set()

    try:
        result = reporter.submit(Measurement(11, 1, 5), callback=callback).result(timeout=2.0)
        assert done.wait(2.0)
    finally:
        reporter.close()
    assert result == RestResponse(status=0, body="")
    assert delivered == [(0, "")]
    assert len(session.calls) == 1
