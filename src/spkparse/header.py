"""DAF file record decoding.

The first 1024-byte record of every DAF file describes the layout of the
rest: how many components each segment summary has, where the directory
chain starts and ends, and which binary numeric format is in use.

References:
    - NAIF "DAF Required Reading"
      https://naif.jpl.nasa.gov/pub/naif/toolkit_docs/C/req/daf.html
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import RECORD_BYTES, DecoderOptions
from .cursor import Buffer, ByteCursor
from .errors import BadArchitectureTag, Truncated

logger = logging.getLogger(__name__)

# Field widths of the file record, in on-disk order
LOCIDW_BYTES = 8
LOCIFN_BYTES = 60
LOCFMT_BYTES = 8
PRENUL_BYTES = 603
FTPSTR_BYTES = 28
PSTNUL_BYTES = 297


@dataclass(frozen=True, slots=True)
class FileHeader:
    """The decoded DAF file record.

    Attributes:
        architecture: File architecture tag, e.g. ``DAF/SPK``.
        n_double_precision: Double-precision components per summary (ND).
        n_integers: Integer components per summary (NI).
        internal_name: Internal file name (up to 60 characters).
        first_summary_block: 1-indexed record of the first directory block.
        last_summary_block: 1-indexed record of the last directory block.
        first_free_address: First free word address at the end of the file.
        numeric_format: Binary format tag, e.g. ``LTL-IEEE``.
        integrity: FTP validation string, or None when not decoded.
    """

    architecture: str
    n_double_precision: int
    n_integers: int
    internal_name: str
    first_summary_block: int
    last_summary_block: int
    first_free_address: int
    numeric_format: str
    integrity: Optional[str] = None

    @property
    def summary_doubles(self) -> int:
        """Size of one packed segment summary, in 8-byte words."""
        return self.n_double_precision + (self.n_integers + 1) // 2

    @property
    def summary_bytes(self) -> int:
        """Size of one packed segment summary (and of one segment name)."""
        return 8 * self.summary_doubles

    @property
    def comment_blocks(self) -> int:
        """Number of comment records between the file record and the chain."""
        return max(0, self.first_summary_block - 2)

    @staticmethod
    def decode(
        buffer: Buffer,
        options: Optional[DecoderOptions] = None,
    ) -> FileHeader:
        """Decode the file record at the start of ``buffer``.

        Args:
            buffer: Whole-file bytes (at least the first 1024).
            options: Decoder options; defaults to :class:`DecoderOptions`.

        Returns:
            The decoded header.

        Raises:
            Truncated: If the buffer is shorter than one record.
            BadArchitectureTag: If the tag is not an accepted value.
        """
        options = options or DecoderOptions()
        if len(buffer) < RECORD_BYTES:
            raise Truncated(0, RECORD_BYTES, len(buffer))

        cur = ByteCursor(buffer)
        architecture = cur.text(LOCIDW_BYTES)
        if architecture not in options.accepted_architectures:
            raise BadArchitectureTag(architecture, options.accepted_architectures)

        nd = cur.u32()
        ni = cur.u32()
        internal_name = cur.text(LOCIFN_BYTES)
        fward = cur.u32()
        bward = cur.u32()
        free = cur.u32()
        numeric_format = cur.text(LOCFMT_BYTES)
        cur.skip(PRENUL_BYTES)

        if options.decode_integrity:
            integrity: Optional[str] = cur.text(FTPSTR_BYTES)
        else:
            cur.skip(FTPSTR_BYTES)
            integrity = None

        cur.skip(PSTNUL_BYTES)

        header = FileHeader(
            architecture=architecture,
            n_double_precision=nd,
            n_integers=ni,
            internal_name=internal_name,
            first_summary_block=fward,
            last_summary_block=bward,
            first_free_address=free,
            numeric_format=numeric_format,
            integrity=integrity,
        )
        logger.debug(
            "File record: %s ND=%d NI=%d chain %d..%d format %s",
            architecture, nd, ni, fward, bward, numeric_format,
        )
        return header

    def to_dict(self) -> dict:
        """Convert to a flat dictionary for display or serialization."""
        return {
            "architecture": self.architecture,
            "nd": self.n_double_precision,
            "ni": self.n_integers,
            "internal_name": self.internal_name,
            "first_summary_block": self.first_summary_block,
            "last_summary_block": self.last_summary_block,
            "first_free_address": self.first_free_address,
            "numeric_format": self.numeric_format,
        }


def decode_header(
    buffer: Buffer,
    options: Optional[DecoderOptions] = None,
) -> FileHeader:
    """Decode the DAF file record; see :meth:`FileHeader.decode`."""
    return FileHeader.decode(buffer, options)
