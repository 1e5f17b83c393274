from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .config import ReporterSettings
from .measurement import Measurement, measurement_payload

logger = logging.getLogger(__name__)

ResponseCallback = Callable[[int, str], None]


@dataclass(frozen=True)
class RestResponse:
    status: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class MeasurementReporter:
    """
    POSTs accepted measurements to the measurement endpoint on a small worker
    pool. Each submission resolves to a :class:`RestResponse`; a transport
    failure resolves to status 0 with an empty body. Nothing is retried.
    """

    def __init__(
        self,
        settings: ReporterSettings,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="reporter"
        )

    def submit(
        self,
        measurement: Measurement,
        callback: Optional[ResponseCallback] = None,
    ) -> "Future[RestResponse]":
        future = self._executor.submit(self._post, measurement)
        if callback is not None:
            future.add_done_callback(lambda done: _deliver(done, callback))
        return future

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._session.close()

    def _post(self, measurement: Measurement) -> RestResponse:
        body = json.dumps(measurement_payload(measurement)).encode("utf-8")
        logger.debug("POST %s %s", self.settings.url, body)
        try:
            response = self._session.post(
                self.settings.url,
                data=body,
                headers={"Content-Type": "application/json; charset=utf-8"},
                timeout=self.settings.timeout_sec,
            )
        except requests.RequestException as exc:
            logger.warning("Measurement upload failed: %s", exc)
            return RestResponse(status=0, body="")
        result = RestResponse(status=response.status_code, body=response.text or "")
        if result.ok:
            logger.info("Uploaded %s=%d (HTTP %d)", measurement.label(), measurement.value, result.status)
        else:
            logger.warning("Endpoint answered HTTP %d: %s", result.status, result.body)
        return result


def _deliver(future: "Future[RestResponse]", callback: ResponseCallback) -> None:
    response = future.result()
    try:
        callback(response.status, response.body)
    except Exception:
        logger.exception("Response callback raised")
