"""Error taxonomy for DAF/SPK decoding.

Every fatal decoding failure is an ``SpkError`` subclass, so callers can
catch the whole family or a single kind. Recoverable anomalies are
``SpkWarning`` instances: they are recorded and logged, never raised.
"""

from __future__ import annotations

from typing import Optional


class SpkError(ValueError):
    """Base class for all DAF/SPK decoding failures."""


class Truncated(SpkError):
    """Fewer bytes remain in the buffer than a field requires."""

    def __init__(self, offset: int, needed: int, available: int) -> None:
        self.offset = offset
        self.needed = needed
        self.available = available
        super().__init__(
            f"Truncated at offset {offset}: needed {needed} bytes, "
            f"{available} available"
        )


class BadArchitectureTag(SpkError):
    """The file record does not start with an accepted architecture tag."""

    def __init__(self, tag: str, accepted: tuple[str, ...]) -> None:
        self.tag = tag
        self.accepted = accepted
        super().__init__(
            f"Unrecognized architecture tag {tag!r} "
            f"(expected one of {', '.join(accepted)})"
        )


class MarkerNotFound(SpkError):
    """A required marker phrase is absent from the comment area."""

    def __init__(self, marker: str, offset: int = 0) -> None:
        self.marker = marker
        self.offset = offset
        super().__init__(f"Marker {marker!r} not found after offset {offset}")


class UnparsableNumeric(SpkError):
    """A numeric token could not be parsed (after D→E substitution)."""

    def __init__(self, token: str, context: Optional[str] = None) -> None:
        self.token = token
        self.context = context
        msg = f"Cannot parse numeric value {token!r}"
        if context:
            msg += f" in {context!r}"
        super().__init__(msg)


class UnboundedChain(SpkError):
    """Directory chain traversal revisited a block or ran past its bound."""

    def __init__(self, block: int, visited: int) -> None:
        self.block = block
        self.visited = visited
        super().__init__(
            f"Directory chain does not terminate: block {block} reached "
            f"after visiting {visited} blocks"
        )


class MalformedDirectory(SpkError):
    """A directory block or descriptor holds impossible values."""

    def __init__(self, block: int, reason: str) -> None:
        self.block = block
        self.reason = reason
        super().__init__(f"Malformed directory block {block}: {reason}")


class MalformedSegment(SpkError):
    """A segment's trailing metadata is inconsistent with its extent."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Malformed segment {name!r}: {reason}")


class UnsupportedDataType(SpkError):
    """The segment uses an encoding other than Chebyshev types 2 or 3."""

    def __init__(self, data_type: int) -> None:
        self.data_type = data_type
        super().__init__(f"Unsupported SPK data type {data_type}")


class UnsupportedFrame(SpkError):
    """The segment is expressed in a reference frame we do not handle."""

    def __init__(self, frame_id: int) -> None:
        self.frame_id = frame_id
        super().__init__(f"Unsupported reference frame {frame_id}")


class OutOfRange(SpkError):
    """The query time lies outside the segment's validity interval."""

    def __init__(self, time: float, begin: float, end: float) -> None:
        self.time = time
        self.begin = begin
        self.end = end
        super().__init__(
            f"Time {time:.3f} s outside segment coverage "
            f"[{begin:.3f}, {end:.3f}]"
        )


class SpkWarning(UserWarning):
    """Base class for recoverable anomalies recorded during decoding."""


class UnrecognizedBodyIdentifier(SpkWarning):
    """A GM table line names a body we cannot map to a NAIF id."""

    def __init__(self, identifier: str, line: str) -> None:
        self.identifier = identifier
        self.line = line
        super().__init__(f"Unknown body identifier GM{identifier} in {line!r}")


class DuplicateBodyIdentifier(SpkWarning):
    """A body catalog entry reuses a NAIF id; the first entry is kept."""

    def __init__(self, naif_id: int, name: str, kept: str) -> None:
        self.naif_id = naif_id
        self.name = name
        self.kept = kept
        super().__init__(f"Duplicate NAIF id {naif_id} ({name}); keeping {kept}")
