"""Structured metadata from the free-text comment area of a JPL kernel.

The comment area of a DE-series kernel is a FORTRAN-era text dump. Lines
are NUL-terminated, blank lines show up as double NULs, and numbers use
``D`` exponents. There is no length field for the text and no schema.
This module reads it with a small explicit grammar: each production seeks
a marker phrase, then consumes one field. Every production is a separate
function, so each failure point can be exercised on its own.

Productions, in file order:
    identity:  <kernel marker> NAME(5) ... <date marker> DATE \\0
    span:      <span marker> [label:] START to END \\0        (optional)
    bodies:    "Bodies included:" \\0\\0 { NAME ( ID ) } \\0\\0
    gm table:  "Sun/GM(I)" { GM<id> tokens... \\0 }

The body catalog is built in two phases. The identities (name, NAIF id)
come from the bodies section and the GM values from the GM table. They
are merged into :class:`Body` values only at the end, so an unknown GM is
``None`` rather than a sentinel.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterable, Mapping, Optional

import pandas as pd

from .config import RECORD_BYTES, DecoderOptions
from .cursor import Buffer
from .errors import (
    DuplicateBodyIdentifier,
    MarkerNotFound,
    SpkWarning,
    Truncated,
    UnparsableNumeric,
    UnrecognizedBodyIdentifier,
)
from .header import FileHeader

logger = logging.getLogger(__name__)

KERNEL_NAME_CHARS = 5
"""Width of the kernel name token, e.g. ``DE436``."""

EOT = b"\x04"
"""End-of-comments marker."""

INT16_MIN, INT16_MAX = -(2**15), 2**15 - 1

# GM identifiers whose column holds Sun/GM ratios rather than GM values
_RATIO_IDENTIFIERS = ("M", "B")

_NAMED_GM_TARGETS = {
    "S": (10,),    # Sun
    "M": (301,),   # Moon
    "B": (3,),     # Earth-Moon barycenter
}


# ── Data model ──


@dataclass(frozen=True, slots=True)
class KernelIdentity:
    """Kernel name and integration date from the comment preamble."""
    name: str
    date: str


@dataclass(frozen=True, slots=True)
class ValiditySpan:
    """Raw start/end date tokens of the span covered by the kernel."""
    start: str
    end: str


@dataclass(frozen=True, slots=True)
class BodyIdentity:
    """A cataloged body before gravitational parameters are known."""
    name: str
    naif_id: int


@dataclass(frozen=True, slots=True)
class Body:
    """A cataloged body with its gravitational parameter, if published.

    Attributes:
        name: Body name as written in the kernel comments.
        naif_id: NAIF integer id (negative for spacecraft).
        gravitational_parameter: GM in km³/s², or None when not listed.
    """
    name: str
    naif_id: int
    gravitational_parameter: Optional[float] = None

    @property
    def gm_known(self) -> bool:
        return self.gravitational_parameter is not None


class GMStopReason(Enum):
    """Why the GM table scan stopped."""
    EXHAUSTED = auto()        # no further GM text in the comment area
    NO_VALUE = auto()         # line lacks the value column: end of table
    UNPARSABLE = auto()       # value column present but not a number
    MISSING_SUN_GM = auto()   # Sun/GM ratio line seen before the Sun's GM


@dataclass
class GMScan:
    """Outcome of scanning the gravitational-parameter table.

    Attributes:
        values: GM by NAIF id, with alias ids written in lock-step.
        sun_gm: GM of the Sun, once its line has been read.
        lines_read: Number of lines that yielded a value.
        stop_reason: Why the scan stopped.
        stop_line: Text of the line that stopped the scan, if any.
        warnings: Recoverable anomalies, e.g. unrecognized identifiers.
    """
    values: dict[int, float] = field(default_factory=dict)
    sun_gm: Optional[float] = None
    lines_read: int = 0
    stop_reason: GMStopReason = GMStopReason.EXHAUSTED
    stop_line: Optional[str] = None
    warnings: list[SpkWarning] = field(default_factory=list)

    @property
    def table_ended(self) -> bool:
        """True when the scan stopped at a genuine end of table."""
        return self.stop_reason in (GMStopReason.EXHAUSTED, GMStopReason.NO_VALUE)


@dataclass
class CommentCatalog:
    """Everything extracted from a kernel's comment area."""
    identity: KernelIdentity
    span: Optional[ValiditySpan]
    bodies: dict[int, Body]
    gm: GMScan
    body_warnings: list[SpkWarning] = field(default_factory=list)

    @property
    def warnings(self) -> list[SpkWarning]:
        """Body catalog warnings followed by GM table warnings."""
        return self.body_warnings + self.gm.warnings

    def body(self, naif_id: int) -> Body:
        """Return the body with ``naif_id``; raises KeyError if absent."""
        return self.bodies[naif_id]

    def find(self, name: str) -> list[Body]:
        """Return bodies whose name matches ``name`` case-insensitively."""
        key = name.strip().lower()
        return [b for b in self.bodies.values() if b.name.lower() == key]

    def to_frame(self) -> pd.DataFrame:
        """Body catalog as a DataFrame, one row per NAIF id."""
        rows = [
            {
                "naif_id": b.naif_id,
                "name": b.name,
                "gm_km3_s2": b.gravitational_parameter,
            }
            for b in self.bodies.values()
        ]
        return pd.DataFrame(rows, columns=["naif_id", "name", "gm_km3_s2"])


# ── Scanner ──


class CommentScanner:
    """Forward-only token scanner over comment-area bytes."""

    def __init__(self, text: bytes, offset: int = 0) -> None:
        self.text = text
        self.offset = offset

    @property
    def done(self) -> bool:
        return self.offset >= len(self.text)

    def find(self, token: bytes) -> int:
        """Absolute index of ``token`` at or after the offset, or -1."""
        return self.text.find(token, self.offset)

    def at(self, token: bytes) -> bool:
        return self.text.startswith(token, self.offset)

    def skip_to(self, marker: str) -> bool:
        """Move past the next ``marker``; return False if there is none."""
        token = marker.encode("latin-1")
        idx = self.find(token)
        if idx < 0:
            return False
        self.offset = idx + len(token)
        return True

    def seek(self, marker: str) -> None:
        """Move past the next ``marker``; raise MarkerNotFound if absent."""
        start = self.offset
        if not self.skip_to(marker):
            raise MarkerNotFound(marker, start)

    def take(self, n: int) -> str:
        """Consume exactly ``n`` bytes of text."""
        if self.offset + n > len(self.text):
            raise Truncated(self.offset, n, len(self.text) - self.offset)
        chunk = self.text[self.offset:self.offset + n]
        self.offset += n
        return chunk.decode("latin-1")

    def until(self, terminator: bytes = b"\0") -> str:
        """Consume up to and including ``terminator`` (or to the end)."""
        idx = self.find(terminator)
        if idx < 0:
            chunk = self.text[self.offset:]
            self.offset = len(self.text)
        else:
            chunk = self.text[self.offset:idx]
            self.offset = idx + len(terminator)
        return chunk.decode("latin-1")

    def skip_any(self, chars: bytes) -> None:
        """Consume any run of bytes drawn from ``chars``."""
        while not self.done and self.text[self.offset] in chars:
            self.offset += 1

    def skip_nulls(self) -> None:
        self.skip_any(b"\0")

    def skip_blanks(self) -> None:
        self.skip_any(b" \t\r\n")


# ── Comment area ──


def comment_area(
    buffer: Buffer,
    header: FileHeader,
    options: Optional[DecoderOptions] = None,
) -> bytes:
    """Concatenate the text of the comment records between header and chain.

    The DAF format does not store the comment length. The area is bounded
    by the first directory block, and within each record only the first
    ``options.comment_record_chars`` bytes carry text. Text stops at the
    first EOT byte.
    """
    options = options or DecoderOptions()
    chunks = []
    for i in range(header.comment_blocks):
        offset = RECORD_BYTES * (i + 1)
        record = bytes(buffer[offset:offset + RECORD_BYTES])
        if len(record) < RECORD_BYTES:
            raise Truncated(offset, RECORD_BYTES, len(record))
        chunks.append(record[:options.comment_record_chars])

    text = b"".join(chunks)
    eot = text.find(EOT)
    return text if eot < 0 else text[:eot]


def comments_text(
    buffer: Buffer,
    header: FileHeader,
    options: Optional[DecoderOptions] = None,
) -> str:
    """Return the comment area as readable text, one line per NUL."""
    return comment_area(buffer, header, options).decode("latin-1").replace("\0", "\n")


# ── Productions ──


def read_identity(
    scanner: CommentScanner,
    options: Optional[DecoderOptions] = None,
) -> KernelIdentity:
    """Read the kernel name token and the integration date."""
    options = options or DecoderOptions()
    scanner.seek(options.kernel_marker)
    name = scanner.take(KERNEL_NAME_CHARS).strip()
    scanner.seek(options.date_marker)
    date = scanner.until(b"\0").strip()
    return KernelIdentity(name=name, date=date)


def read_span(
    scanner: CommentScanner,
    options: Optional[DecoderOptions] = None,
) -> Optional[ValiditySpan]:
    """Read the optional validity span; None when the marker is absent.

    The marker may be followed by the rest of a label ending in ``:``,
    e.g. ``span covered by ephemeris:``. The dates then come on the same
    line or after a run of NULs.
    """
    options = options or DecoderOptions()
    if not scanner.skip_to(options.span_marker):
        return None

    line_end = scanner.find(b"\0")
    colon = scanner.find(b":")
    if colon >= 0 and (line_end < 0 or colon < line_end):
        scanner.offset = colon + 1
    scanner.skip_any(b" \t\r\n\0")

    start_offset = scanner.offset
    line = scanner.until(b"\0")
    sep = re.escape(options.span_separator)
    parts = re.split(rf"\s+{sep}\s+", line.strip(), maxsplit=1)
    if len(parts) != 2:
        raise MarkerNotFound(options.span_separator, start_offset)
    return ValiditySpan(start=parts[0].strip(), end=parts[1].strip())


def read_bodies(
    scanner: CommentScanner,
    options: Optional[DecoderOptions] = None,
    warnings: Optional[list[SpkWarning]] = None,
) -> list[BodyIdentity]:
    """Read ``<name> ( <naif id> )`` entries up to a double NUL.

    A repeated NAIF id keeps the first entry. The repeat is logged and,
    when ``warnings`` is given, appended to it as a
    :class:`DuplicateBodyIdentifier`.

    Raises:
        MarkerNotFound: If the bodies marker or a closing parenthesis is missing.
        UnparsableNumeric: If an id is not a signed 16-bit integer.
    """
    options = options or DecoderOptions()
    scanner.seek(options.bodies_marker)

    seen: dict[int, BodyIdentity] = {}
    while True:
        scanner.skip_blanks()
        if scanner.done or scanner.at(b"\0\0"):
            break
        scanner.skip_nulls()

        open_paren = scanner.find(b"(")
        stop = scanner.find(b"\0\0")
        if open_paren < 0 or 0 <= stop < open_paren:
            break

        name = scanner.until(b"(").strip(" \t\r\n\0")
        if scanner.find(b")") < 0:
            raise MarkerNotFound(")", scanner.offset)
        naif_id = _parse_naif_id(scanner.until(b")").strip(), name)

        if naif_id in seen:
            warning = DuplicateBodyIdentifier(naif_id, name, seen[naif_id].name)
            logger.warning("%s", warning)
            if warnings is not None:
                warnings.append(warning)
            continue
        seen[naif_id] = BodyIdentity(name=name, naif_id=naif_id)

    logger.debug("Body catalog: %d entries", len(seen))
    return list(seen.values())


def read_gm_table(
    scanner: CommentScanner,
    options: Optional[DecoderOptions] = None,
) -> GMScan:
    """Scan the GM table one NUL-terminated line at a time.

    The scan stops at the first line that yields no value. The reason is
    recorded on the result, so callers can tell a clean end of table from
    a corrupt line.

    Raises:
        MarkerNotFound: If the GM table marker is absent.
        UnparsableNumeric: On a corrupt value when ``options.strict_gm`` is set.
    """
    options = options or DecoderOptions()
    marker = options.gm_marker
    scanner.seek(marker)
    marker_bytes = marker.encode("latin-1")

    scan = GMScan()
    while True:
        while scanner.at(marker_bytes):
            scanner.offset += len(marker_bytes)
        if not scanner.skip_to("GM"):
            scan.stop_reason = GMStopReason.EXHAUSTED
            break

        line = scanner.until(b"\0")
        tokens = line.split()
        try:
            value, reason = gm_value(tokens, scan.sun_gm)
        except UnparsableNumeric as exc:
            if options.strict_gm:
                raise UnparsableNumeric(exc.token, line) from exc
            value, reason = None, GMStopReason.UNPARSABLE

        if reason is not None:
            scan.stop_reason = reason
            scan.stop_line = line
            break

        scan.lines_read += 1
        identifier = tokens[0]
        if identifier == "S":
            scan.sun_gm = value

        targets = gm_targets(identifier)
        if not targets:
            warning = UnrecognizedBodyIdentifier(identifier, line.strip())
            logger.warning("%s", warning)
            scan.warnings.append(warning)
            continue
        for naif_id in targets:
            scan.values[naif_id] = value

    logger.debug(
        "GM table: %d lines, %d ids, stopped (%s)",
        scan.lines_read, len(scan.values), scan.stop_reason.name,
    )
    return scan


# ── GM line rules ──


def parse_fortran_float(token: str) -> float:
    """Parse a FORTRAN-style number such as ``1.32712440018D+11``."""
    try:
        return float(token.replace("D", "E").replace("d", "e"))
    except ValueError:
        raise UnparsableNumeric(token) from None


def gm_value(
    tokens: list[str],
    sun_gm: Optional[float],
) -> tuple[Optional[float], Optional[GMStopReason]]:
    """Apply the column rules to one tokenized GM line.

    Most lines carry the GM itself in column 3. The Moon (``M``) and
    Earth-Moon barycenter (``B``) lines carry ``Sun/GM`` ratios in column
    2, so their GM is derived from the Sun's.

    Returns:
        ``(value, None)`` on success, or ``(None, reason)`` when the line
        ends the table.

    Raises:
        UnparsableNumeric: If the value column is not a number.
    """
    if not tokens:
        return None, GMStopReason.NO_VALUE

    if tokens[0] in _RATIO_IDENTIFIERS:
        if len(tokens) <= 2:
            return None, GMStopReason.NO_VALUE
        if sun_gm is None:
            return None, GMStopReason.MISSING_SUN_GM
        ratio = parse_fortran_float(tokens[2])
        if ratio == 0.0:
            raise UnparsableNumeric(tokens[2])
        return sun_gm / ratio, None

    if len(tokens) <= 3:
        return None, GMStopReason.NO_VALUE
    return parse_fortran_float(tokens[3]), None


def gm_targets(identifier: str) -> tuple[int, ...]:
    """NAIF ids that receive the GM of a table identifier.

    Planet indices 1-3 write to the barycenter-convention id ``p*100+99``.
    Mercury and Venus (p < 3) are also cataloged under the bare index, and
    both ids get the same value. Indices from 4 up map to themselves. Letters
    map through a fixed table. Anything else maps to nothing.
    """
    try:
        p = int(identifier)
    except ValueError:
        return _NAMED_GM_TARGETS.get(identifier, ())

    if 1 <= p <= 3:
        return (p * 100 + 99, p) if p < 3 else (p * 100 + 99,)
    if p >= 4:
        return (p,)
    return ()


# ── Assembly ──


def merge_catalog(
    identities: Iterable[BodyIdentity],
    gm_values: Mapping[int, float],
) -> dict[int, Body]:
    """Join identities with GM values into finished bodies, keyed by id."""
    bodies: dict[int, Body] = {}
    for ident in identities:
        bodies[ident.naif_id] = Body(
            name=ident.name,
            naif_id=ident.naif_id,
            gravitational_parameter=gm_values.get(ident.naif_id),
        )

    orphans = sorted(set(gm_values) - set(bodies))
    if orphans:
        logger.debug("GM values without a cataloged body: %s", orphans)
    return bodies


def extract_catalog(
    area: bytes,
    options: Optional[DecoderOptions] = None,
) -> CommentCatalog:
    """Run every production over the comment area and merge the results.

    Args:
        area: Comment-area bytes, e.g. from :func:`comment_area`.
        options: Decoder options; defaults to :class:`DecoderOptions`.

    Returns:
        The assembled catalog.

    Raises:
        MarkerNotFound: If a required marker is absent.
        UnparsableNumeric: If a body id is malformed, or a GM value is
            corrupt while ``options.strict_gm`` is set.
    """
    options = options or DecoderOptions()
    scanner = CommentScanner(area)

    identity = read_identity(scanner, options)
    span = read_span(CommentScanner(area), options)
    body_warnings: list[SpkWarning] = []
    identities = read_bodies(scanner, options, body_warnings)
    gm = read_gm_table(scanner, options)

    bodies = merge_catalog(identities, gm.values)
    logger.debug(
        "Catalog %s: %d bodies, %d with GM",
        identity.name, len(bodies), sum(b.gm_known for b in bodies.values()),
    )
    return CommentCatalog(
        identity=identity, span=span, bodies=bodies, gm=gm,
        body_warnings=body_warnings,
    )


def _parse_naif_id(text: str, name: str) -> int:
    try:
        naif_id = int(text)
    except ValueError:
        raise UnparsableNumeric(text, name) from None
    if not INT16_MIN <= naif_id <= INT16_MAX:
        raise UnparsableNumeric(text, name)
    return naif_id
