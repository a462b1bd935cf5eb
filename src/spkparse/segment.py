"""Chebyshev segment decoding and state evaluation.

SPK types 2 and 3 store a segment as ``n`` fixed-size records followed
by four trailing words ``[init, intlen, rsize, n]``. Each record covers
one sub-interval of length ``intlen`` starting at ``init + k * intlen``
and holds:

    [mid, radius, axis_0 coeffs..., axis_1 coeffs..., ...]

Type 2 stores 3 axes (position). Type 3 stores 6 (position, velocity).
Time is normalized to ``s = (t - mid) / radius`` in [-1, 1] before the
series is summed.

References:
    - NAIF "SPK Required Reading", types 2 and 3
      https://naif.jpl.nasa.gov/pub/naif/toolkit_docs/C/req/spk.html
    - Newhall, X X (1989). "Numerical Representation of Planetary
      Ephemerides."
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

from .config import WORD_BYTES, DecoderOptions
from .cursor import Buffer, ByteCursor
from .directory import SegmentDescriptor
from .errors import (
    MalformedSegment,
    OutOfRange,
    Truncated,
    UnsupportedDataType,
    UnsupportedFrame,
)

logger = logging.getLogger(__name__)

T0 = 2451545.0
"""Julian date of the J2000 epoch."""

S_PER_DAY = 86400.0
"""Seconds in a day."""

J2000_EPOCH = datetime(2000, 1, 1, 12)
"""J2000 epoch as a naive datetime (TDB, leap seconds ignored)."""

AXES_BY_TYPE = {
    2: 3,   # Chebyshev, position only
    3: 6,   # Chebyshev, position and velocity
}

METADATA_WORDS = 4


@dataclass(frozen=True, slots=True)
class ElementRecordMetadata:
    """Trailing directory words of a Chebyshev segment.

    Attributes:
        init: Start time of the first record (seconds past J2000).
        intlen: Length of each record's interval (seconds).
        rsize: Words per record, including ``mid`` and ``radius``.
        n: Number of records.
    """
    init: float
    intlen: float
    rsize: int
    n: int


@dataclass(frozen=True)
class ChebyshevRecord:
    """Coefficients for one sub-interval of a segment.

    Attributes:
        mid: Center of the record's interval (seconds past J2000).
        radius: Half-length of the interval (seconds).
        coefficients: Array of shape ``(axes, degree + 1)``.
    """
    mid: float
    radius: float
    coefficients: np.ndarray

    @property
    def degree(self) -> int:
        return self.coefficients.shape[1] - 1

    def normalize(self, t: float) -> float:
        """Map ``t`` onto the record's [-1, 1] Chebyshev domain."""
        return (t - self.mid) / self.radius


@dataclass(frozen=True)
class State:
    """Position (km) and velocity (km/s) of a target relative to its center."""
    position: np.ndarray
    velocity: np.ndarray

    def to_dict(self) -> dict:
        x, y, z = (float(v) for v in self.position)
        vx, vy, vz = (float(v) for v in self.velocity)
        return {"x": x, "y": y, "z": z, "vx": vx, "vy": vy, "vz": vz}


# ── Time helpers ──


def jd(seconds: float) -> float:
    """Convert seconds past J2000 to a Julian date."""
    return T0 + seconds / S_PER_DAY


def et_to_datetime(seconds: float) -> datetime:
    """Approximate calendar time for seconds past J2000, for display only."""
    return J2000_EPOCH + timedelta(seconds=seconds)


# ── Decoding ──


def axis_count(data_type: int) -> int:
    """Number of coefficient axes per record for an SPK data type."""
    try:
        return AXES_BY_TYPE[data_type]
    except KeyError:
        raise UnsupportedDataType(data_type) from None


def read_metadata(
    buffer: Buffer,
    descriptor: SegmentDescriptor,
    name: str = "",
) -> ElementRecordMetadata:
    """Read ``[init, intlen, rsize, n]`` from the last four words of a segment.

    Raises:
        Truncated: If the segment extends past the end of the buffer.
        MalformedSegment: If the words are inconsistent with the segment's
            length.
    """
    start = descriptor.start_index * WORD_BYTES
    end = descriptor.end_index * WORD_BYTES
    if end > len(buffer):
        raise Truncated(start, end - start, max(0, len(buffer) - start))
    if descriptor.word_length < METADATA_WORDS:
        raise MalformedSegment(name, f"only {descriptor.word_length} words long")

    cur = ByteCursor(buffer, end - METADATA_WORDS * WORD_BYTES)
    init, intlen, rsize, n = cur.f64(), cur.f64(), cur.f64(), cur.f64()

    for label, value in (("rsize", rsize), ("n", n)):
        if not math.isfinite(value) or value < 1 or value != int(value):
            raise MalformedSegment(name, f"{label} is {value!r}")
    if not (math.isfinite(intlen) and intlen > 0):
        raise MalformedSegment(name, f"interval length is {intlen!r}")

    metadata = ElementRecordMetadata(
        init=init, intlen=intlen, rsize=int(rsize), n=int(n),
    )
    expected = metadata.n * metadata.rsize + METADATA_WORDS
    if expected != descriptor.word_length:
        raise MalformedSegment(
            name,
            f"{metadata.n} records of {metadata.rsize} words need {expected} "
            f"words, segment has {descriptor.word_length}",
        )
    return metadata


def record_index(metadata: ElementRecordMetadata, t: float) -> int:
    """Index of the record covering ``t``, clamped to the valid range.

    Clamping makes ``t == end_second`` select the last record rather than
    one past it.
    """
    k = math.floor((t - metadata.init) / metadata.intlen)
    return min(max(k, 0), metadata.n - 1)


def read_record(
    buffer: Buffer,
    descriptor: SegmentDescriptor,
    metadata: ElementRecordMetadata,
    k: int,
    axes: int,
) -> ChebyshevRecord:
    """Load record ``k`` of a segment as a :class:`ChebyshevRecord`."""
    offset = (descriptor.start_index + k * metadata.rsize) * WORD_BYTES
    nbytes = metadata.rsize * WORD_BYTES
    if offset + nbytes > len(buffer):
        raise Truncated(offset, nbytes, max(0, len(buffer) - offset))

    words = np.frombuffer(buffer, dtype="<f8", count=metadata.rsize, offset=offset)
    return ChebyshevRecord(
        mid=float(words[0]),
        radius=float(words[1]),
        coefficients=words[2:].reshape(axes, -1),
    )


# ── Evaluation ──


def _basis(s: float, count: int) -> tuple[np.ndarray, np.ndarray]:
    """Chebyshev polynomials T_k(s) and their derivatives, k < count."""
    t = np.zeros(count)
    dt = np.zeros(count)
    t[0] = 1.0
    if count > 1:
        t[1] = s
        dt[1] = 1.0
    for k in range(2, count):
        t[k] = 2.0 * s * t[k - 1] - t[k - 2]
        dt[k] = 2.0 * t[k - 1] + 2.0 * s * dt[k - 1] - dt[k - 2]
    return t, dt


def chebyshev(coefficients: np.ndarray, s: float) -> np.ndarray:
    """Sum ``coefficients[..., i] * T_i(s)`` along the last axis."""
    coefficients = np.asarray(coefficients, dtype=float)
    t, _ = _basis(s, coefficients.shape[-1])
    return coefficients @ t


def chebyshev_derivative(coefficients: np.ndarray, s: float) -> np.ndarray:
    """Derivative of :func:`chebyshev` with respect to ``s``."""
    coefficients = np.asarray(coefficients, dtype=float)
    _, dt = _basis(s, coefficients.shape[-1])
    return coefficients @ dt


def state_at(
    buffer: Buffer,
    descriptor: SegmentDescriptor,
    t: float,
    options: Optional[DecoderOptions] = None,
    name: str = "",
) -> State:
    """Evaluate a Chebyshev segment at time ``t``.

    Type 3 segments carry velocity coefficients of their own. For type 2,
    velocity is the time derivative of the position series.

    Args:
        buffer: Whole-file bytes.
        descriptor: The segment to evaluate.
        t: Query time, seconds past J2000 (TDB).
        options: Decoder options; defaults to :class:`DecoderOptions`.
        name: Segment name, used in error messages.

    Returns:
        Position (km) and velocity (km/s).

    Raises:
        UnsupportedDataType: For data types other than 2 or 3.
        UnsupportedFrame: For frames outside ``options.supported_frames``.
        OutOfRange: If ``t`` is outside ``[begin_second, end_second]``.
        MalformedSegment: If the segment's layout is inconsistent.
    """
    options = options or DecoderOptions()
    axes = axis_count(descriptor.data_type)
    if descriptor.frame_id not in options.supported_frames:
        raise UnsupportedFrame(descriptor.frame_id)
    if not descriptor.covers(t):
        raise OutOfRange(t, descriptor.begin_second, descriptor.end_second)

    metadata = read_metadata(buffer, descriptor, name)
    if metadata.rsize <= 2 or (metadata.rsize - 2) % axes:
        raise MalformedSegment(
            name, f"record size {metadata.rsize} does not split into {axes} axes",
        )

    k = record_index(metadata, t)
    record = read_record(buffer, descriptor, metadata, k, axes)
    if record.radius == 0.0:
        raise MalformedSegment(name, f"record {k} has zero radius")

    s = record.normalize(t)
    values = chebyshev(record.coefficients, s)
    if axes == 6:
        position, velocity = values[:3], values[3:]
    else:
        position = values
        velocity = chebyshev_derivative(record.coefficients, s) / record.radius

    logger.debug("Segment %s record %d/%d at s=%.6f", name, k, metadata.n, s)
    return State(position=position, velocity=velocity)
