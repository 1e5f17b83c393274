"""
Decoding and deduplication of iBeacon-style sensor advertisements.

The subpackage exposes the byte codec, the fixed-layout frame decoder, the
measurement extractor and the duplicate sequencer, plus the host pieces that
feed them from a bleak scanner and forward accepted readings over HTTP.
"""

from .codec import (
    bytes_to_hex,
    bytes_to_latin1_text,
    bytes_to_signed_int,
    bytes_to_unsigned_int,
    text_to_uuid,
    uuid_to_hex,
    uuid_to_text,
)
from .config import GatewayConfig, HostRuntime, ReporterSettings, ScanSettings, load_config
from .frames import (
    DecodedFrame,
    DecodeError,
    FrameDecoder,
    FrameTooShortError,
    build_frame,
    decode_frame,
    normalize,
)
from .measurement import Measurement, MeasurementKind, extract_measurement, measurement_payload
from .processing import MeasurementPipeline, ProcessOutcome, ScanEvent
from .reporter import MeasurementReporter, RestResponse
from .sequencer import Decision, DuplicateSequencer, SequencerState, observe

__all__ = [
    "bytes_to_hex",
    "bytes_to_latin1_text",
    "bytes_to_signed_int",
    "bytes_to_unsigned_int",
    "text_to_uuid",
    "uuid_to_hex",
    "uuid_to_text",
    "GatewayConfig",
    "HostRuntime",
    "ReporterSettings",
    "ScanSettings",
    "load_config",
    "DecodedFrame",
    "DecodeError",
    "FrameDecoder",
    "FrameTooShortError",
    "build_frame",
    "decode_frame",
    "normalize",
    "Measurement",
    "MeasurementKind",
    "extract_measurement",
    "measurement_payload",
    "MeasurementPipeline",
    "ProcessOutcome",
    "ScanEvent",
    "MeasurementReporter",
    "RestResponse",
    "Decision",
    "DuplicateSequencer",
    "SequencerState",
    "observe",
]
