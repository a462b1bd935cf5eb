"""Decoder configuration.

The comment area of JPL kernels is free text written by several
generations of tooling, so its marker phrases are configurable rather
than hard-coded. Binary layout constants are not: they are fixed by the
DAF format.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# ── DAF layout constants ──

RECORD_BYTES = 1024
"""Size of every DAF physical record (block)."""

WORD_BYTES = 8
"""Size of one DAF double-precision word."""

SPK_ND = 2
"""Double-precision components per SPK segment summary."""

SPK_NI = 6
"""Integer components per SPK segment summary."""

J2000_FRAME = 1
"""NAIF frame id for the inertial J2000 frame."""


@dataclass
class DecoderOptions:
    """Tunable behavior for header, comment and segment decoding.

    Defaults match the JPL DE4xx planetary kernels.

    Attributes:
        accepted_architectures: Architecture tags accepted in the file record.
        decode_integrity: Decode the FTP validation string (else skip it).
        kernel_marker: Phrase preceding the 5-character kernel name.
        date_marker: Phrase preceding the integration date.
        span_marker: Phrase preceding the optional validity span.
        span_separator: Word separating span start and end.
        bodies_marker: Phrase preceding the body catalog.
        gm_marker: Phrase preceding the gravitational-parameter table.
        comment_record_chars: Characters of text carried by each comment record.
        strict_gm: Raise on an unparsable GM value instead of ending the table.
        strict: Re-raise catalog or directory failures from the kernel facade.
        max_directory_blocks: Optional hard bound on directory chain length.
        supported_frames: Frame ids accepted for state evaluation.
    """
    accepted_architectures: tuple[str, ...] = ("DAF/SPK",)
    decode_integrity: bool = True
    kernel_marker: str = "JPL planetary and lunar ephmeris "
    date_marker: str = "Integrated "
    span_marker: str = "span covered"
    span_separator: str = "to"
    bodies_marker: str = "Bodies included:\0\0"
    gm_marker: str = "Sun/GM(I)"
    comment_record_chars: int = 1000
    strict_gm: bool = False
    strict: bool = False
    max_directory_blocks: Optional[int] = None
    supported_frames: tuple[int, ...] = (J2000_FRAME,)

    @classmethod
    def strict_preset(cls) -> DecoderOptions:
        """Fail loudly on any anomaly, including corrupt GM lines."""
        return cls(strict_gm=True, strict=True, max_directory_blocks=4096)

    @classmethod
    def lenient(cls) -> DecoderOptions:
        """Accept older ``NAIF/DAF`` files and skip the integrity string."""
        return cls(
            accepted_architectures=("DAF/SPK", "NAIF/DAF"),
            decode_integrity=False,
        )
