from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict

from .codec import bytes_to_signed_int, bytes_to_unsigned_int
from .frames import DecodedFrame

GAS_CODE = 11
TEMPERATURE_CODE = 12


class MeasurementKind(str, enum.Enum):
    GAS = "gas"
    TEMPERATURE = "temperatura"
    UNKNOWN = "unknown"

    @classmethod
    def from_code(cls, code: int) -> "MeasurementKind":
        return _KIND_BY_CODE.get(code, cls.UNKNOWN)


_KIND_BY_CODE = {
    GAS_CODE: MeasurementKind.GAS,
    TEMPERATURE_CODE: MeasurementKind.TEMPERATURE,
}


@dataclass(frozen=True)
class Measurement:
    """One sensor reading carried in the major/minor fields of a beacon."""

    kind_code: int
    counter: int
    value: int

    @property
    def kind(self) -> MeasurementKind:
        return MeasurementKind.from_code(self.kind_code)

    def label(self) -> str:
        kind = self.kind
        if kind is MeasurementKind.UNKNOWN:
            return f"UNKNOWN({self.kind_code})"
        return kind.value


def extract_measurement(frame: DecodedFrame) -> Measurement:
    """Read (kind, counter) from ``major`` and the signed value from ``minor``."""
    return Measurement(
        kind_code=bytes_to_unsigned_int(frame.major[0:1]),
        counter=bytes_to_unsigned_int(frame.major[1:2]),
        value=bytes_to_signed_int(frame.minor),
    )


def measurement_payload(measurement: Measurement) -> Dict[str, Any]:
    """JSON body expected by the measurement endpoint."""
    kind = measurement.kind
    tipo: Any = measurement.kind_code if kind is MeasurementKind.UNKNOWN else kind.value
    return {"tipo": tipo, "valor": measurement.value}
