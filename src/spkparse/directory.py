"""Directory (summary) chain traversal.

DAF directory blocks form a doubly linked list of 1024-byte records:

    [next, prev, n_summaries]   three doubles, semantically integers
    summary 0 .. summary n-1    packed ND doubles + NI int32s each

The record right after each directory block holds the segment names,
one per summary, in the same order.

The chain comes from an external, possibly corrupt file. A visited-block
set bounds the walk, so a cycle raises instead of looping forever.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterator, Optional

from .config import RECORD_BYTES, SPK_ND, SPK_NI, DecoderOptions
from .cursor import Buffer, ByteCursor
from .errors import MalformedDirectory, Truncated, UnboundedChain
from .header import FileHeader

logger = logging.getLogger(__name__)

BLOCK_HEADER_BYTES = 24
"""Three f64 control words at the start of a directory block."""


@dataclass(frozen=True, slots=True)
class DirectoryBlockHeader:
    """Control words of one directory block.

    Attributes:
        block: 1-indexed record this header was read from.
        next_block: Next directory record, 0 at chain end.
        prev_block: Previous directory record, 0 at chain start.
        n_summaries: Number of segment summaries in this block.
    """
    block: int
    next_block: int
    prev_block: int
    n_summaries: int


@dataclass(frozen=True, slots=True)
class SegmentDescriptor:
    """Summary of one SPK segment.

    ``start_index`` and ``end_index`` are 0-based, half-open word offsets.
    The segment's bytes are ``buffer[start_index * 8:end_index * 8]``. On
    disk, DAF stores 1-based inclusive word addresses.

    Attributes:
        begin_second: Start of coverage, seconds past J2000 (TDB).
        end_second: End of coverage, seconds past J2000 (TDB).
        target_id: NAIF id of the target body.
        center_id: NAIF id of the center body.
        frame_id: NAIF reference frame id.
        data_type: SPK data type (2 or 3 for Chebyshev segments).
        start_index: First word of segment data (0-based, inclusive).
        end_index: One past the last word of segment data.
    """
    begin_second: float
    end_second: float
    target_id: int
    center_id: int
    frame_id: int
    data_type: int
    start_index: int
    end_index: int

    @property
    def word_length(self) -> int:
        return self.end_index - self.start_index

    def covers(self, t: float) -> bool:
        """True when ``t`` lies within the closed coverage interval."""
        return self.begin_second <= t <= self.end_second


def block_offset(block: int) -> int:
    """Byte offset of 1-indexed record ``block``."""
    return (block - 1) * RECORD_BYTES


def summaries_per_block(header: FileHeader) -> int:
    """Maximum number of summaries that fit in one directory block."""
    return (RECORD_BYTES - BLOCK_HEADER_BYTES) // header.summary_bytes


def read_block_header(buffer: Buffer, block: int) -> DirectoryBlockHeader:
    """Decode the three control words at the start of ``block``.

    Raises:
        Truncated: If the block lies beyond the end of the buffer.
        MalformedDirectory: If a control word is negative or non-integral.
    """
    offset = block_offset(block)
    if offset + RECORD_BYTES > len(buffer):
        raise Truncated(offset, RECORD_BYTES, max(0, len(buffer) - offset))

    cur = ByteCursor(buffer, offset)
    words = (cur.f64(), cur.f64(), cur.f64())
    for label, value in zip(("next", "prev", "count"), words):
        if not math.isfinite(value) or value < 0 or value != int(value):
            raise MalformedDirectory(block, f"{label} word is {value!r}")

    next_block, prev_block, n_summaries = (int(w) for w in words)
    return DirectoryBlockHeader(
        block=block,
        next_block=next_block,
        prev_block=prev_block,
        n_summaries=n_summaries,
    )


def iter_directory_blocks(
    buffer: Buffer,
    header: FileHeader,
    options: Optional[DecoderOptions] = None,
) -> Iterator[DirectoryBlockHeader]:
    """Yield directory block headers in chain order.

    Starts at ``header.first_summary_block`` and follows ``next_block``
    until it reaches 0.

    Raises:
        UnboundedChain: If a block is revisited or the chain exceeds
            ``options.max_directory_blocks``.
    """
    options = options or DecoderOptions()
    visited: set[int] = set()
    block = header.first_summary_block

    while block != 0:
        if block in visited:
            raise UnboundedChain(block, len(visited))
        if (
            options.max_directory_blocks is not None
            and len(visited) >= options.max_directory_blocks
        ):
            raise UnboundedChain(block, len(visited))
        visited.add(block)

        block_header = read_block_header(buffer, block)
        logger.debug(
            "Directory block %d: %d summaries (next=%d prev=%d)",
            block, block_header.n_summaries,
            block_header.next_block, block_header.prev_block,
        )
        yield block_header
        block = block_header.next_block


def read_descriptors(
    buffer: Buffer,
    header: FileHeader,
    block_header: DirectoryBlockHeader,
) -> list[SegmentDescriptor]:
    """Decode the packed summaries that follow a block's control words."""
    block = block_header.block
    capacity = summaries_per_block(header)
    if block_header.n_summaries > capacity:
        raise MalformedDirectory(
            block,
            f"{block_header.n_summaries} summaries exceed capacity {capacity}",
        )

    base = block_offset(block) + BLOCK_HEADER_BYTES
    descriptors = []
    for i in range(block_header.n_summaries):
        cur = ByteCursor(buffer, base + i * header.summary_bytes)
        begin, end = cur.f64(), cur.f64()
        target, center, frame, data_type = cur.i32(), cur.i32(), cur.i32(), cur.i32()
        start_address, end_address = cur.i32(), cur.i32()

        start_index = start_address - 1
        end_index = end_address
        if start_index < 0 or start_index >= end_index:
            raise MalformedDirectory(
                block,
                f"summary {i} has word range {start_address}..{end_address}",
            )

        descriptors.append(SegmentDescriptor(
            begin_second=begin,
            end_second=end,
            target_id=target,
            center_id=center,
            frame_id=frame,
            data_type=data_type,
            start_index=start_index,
            end_index=end_index,
        ))
    return descriptors


def read_names(
    buffer: Buffer,
    header: FileHeader,
    block_header: DirectoryBlockHeader,
) -> list[str]:
    """Decode the segment names stored in the record after ``block_header``."""
    name_block = block_header.block + 1
    offset = block_offset(name_block)
    if offset + RECORD_BYTES > len(buffer):
        raise Truncated(offset, RECORD_BYTES, max(0, len(buffer) - offset))

    cur = ByteCursor(buffer, offset)
    return [cur.text(header.summary_bytes) for _ in range(block_header.n_summaries)]


def walk_directory(
    buffer: Buffer,
    header: FileHeader,
    options: Optional[DecoderOptions] = None,
) -> list[tuple[SegmentDescriptor, str]]:
    """Enumerate every segment in chain-then-ordinal order.

    Args:
        buffer: Whole-file bytes.
        header: The decoded file record (supplies the chain anchor).
        options: Decoder options; defaults to :class:`DecoderOptions`.

    Returns:
        ``(descriptor, name)`` pairs, in the order they appear on disk.

    Raises:
        MalformedDirectory: On a non-SPK summary layout or impossible values.
        UnboundedChain: If the chain does not terminate.
        Truncated: If a block lies beyond the end of the buffer.
    """
    if (header.n_double_precision, header.n_integers) != (SPK_ND, SPK_NI):
        raise MalformedDirectory(
            header.first_summary_block,
            f"summary layout ND={header.n_double_precision} "
            f"NI={header.n_integers} is not SPK ({SPK_ND}/{SPK_NI})",
        )

    entries: list[tuple[SegmentDescriptor, str]] = []
    for block_header in iter_directory_blocks(buffer, header, options):
        descriptors = read_descriptors(buffer, header, block_header)
        names = read_names(buffer, header, block_header)
        entries.extend(zip(descriptors, names))

    logger.debug("Directory chain: %d segments", len(entries))
    return entries
