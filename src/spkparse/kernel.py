"""High-level access to a DAF/SPK kernel held in memory.

Reads the file once, then decodes the header, comment catalog and
directory chain over the same immutable buffer. The header is required.
A failure in the catalog or directory only empties that part of the
result, unless ``options.strict`` is set.

Example:
    >>> kernel = SpkKernel.open("de436.bsp")
    >>> print(kernel.describe())
    >>> segment = kernel.segment_for(target=399, center=3)
    >>> state = kernel.state_at(segment, 0.0)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, TypeVar

import numpy as np
import pandas as pd

from .comments import CommentCatalog, comment_area, comments_text, extract_catalog
from .config import DecoderOptions
from .directory import SegmentDescriptor, walk_directory
from .errors import SpkError
from .header import FileHeader
from .segment import State, et_to_datetime, jd, state_at

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

STATE_COLUMNS = ["et", "epoch", "x", "y", "z", "vx", "vy", "vz"]


@dataclass(frozen=True, slots=True)
class Segment:
    """A segment descriptor paired with its 40-character name."""
    descriptor: SegmentDescriptor
    name: str

    @property
    def target(self) -> int:
        return self.descriptor.target_id

    @property
    def center(self) -> int:
        return self.descriptor.center_id

    @property
    def start_jd(self) -> float:
        return jd(self.descriptor.begin_second)

    @property
    def end_jd(self) -> float:
        return jd(self.descriptor.end_second)

    def to_dict(self) -> dict:
        d = self.descriptor
        return {
            "name": self.name,
            "target": d.target_id,
            "center": d.center_id,
            "frame": d.frame_id,
            "data_type": d.data_type,
            "begin_et": d.begin_second,
            "end_et": d.end_second,
            "start_jd": self.start_jd,
            "end_jd": self.end_jd,
            "start_index": d.start_index,
            "end_index": d.end_index,
        }


class SpkKernel:
    """A decoded SPK kernel.

    Args:
        data: Whole-file bytes.
        options: Decoder options; defaults to :class:`DecoderOptions`.
        path: Source path, kept for display only.

    Raises:
        Truncated: If the file record is incomplete.
        BadArchitectureTag: If the file is not a DAF/SPK file.
    """

    def __init__(
        self,
        data: bytes,
        options: Optional[DecoderOptions] = None,
        path: Optional[Path] = None,
    ) -> None:
        self.data = bytes(data)
        self.options = options or DecoderOptions()
        self.path = path
        self.errors: dict[str, SpkError] = {}

        self.header = FileHeader.decode(self.data, self.options)
        self.catalog: Optional[CommentCatalog] = self._guard(
            "catalog",
            lambda: extract_catalog(
                comment_area(self.data, self.header, self.options), self.options,
            ),
        )
        entries = self._guard(
            "segments", lambda: walk_directory(self.data, self.header, self.options),
        )
        self.segments: list[Segment] = [Segment(d, n) for d, n in entries or []]

        logger.info(
            "Loaded %s: %d segments, %d bodies",
            path or self.header.internal_name or "kernel",
            len(self.segments),
            len(self.catalog.bodies) if self.catalog else 0,
        )

    @classmethod
    def from_bytes(
        cls, data: bytes, options: Optional[DecoderOptions] = None,
    ) -> SpkKernel:
        """Decode a kernel already read into memory."""
        return cls(data, options)

    @classmethod
    def open(
        cls, path: str | Path, options: Optional[DecoderOptions] = None,
    ) -> SpkKernel:
        """Read the file at ``path`` in one go and decode it."""
        path = Path(path)
        return cls(path.read_bytes(), options, path=path)

    def _guard(self, component: str, decode: Callable[[], _T]) -> Optional[_T]:
        try:
            return decode()
        except SpkError as exc:
            if self.options.strict:
                raise
            logger.warning("Could not decode %s: %s", component, exc)
            self.errors[component] = exc
            return None

    # ── Queries ──

    def comments(self) -> str:
        """Return the comment area as text."""
        return comments_text(self.data, self.header, self.options)

    def body_name(self, naif_id: int) -> str:
        """Catalog name for ``naif_id``, or a placeholder when unknown."""
        if self.catalog and naif_id in self.catalog.bodies:
            return self.catalog.bodies[naif_id].name
        return f"NAIF {naif_id}"

    def segment_for(
        self,
        target: int,
        center: int,
        t: Optional[float] = None,
    ) -> Segment:
        """Return the last segment for ``target`` relative to ``center``.

        If ``t`` is given, only segments covering ``t`` are considered.

        Raises:
            KeyError: If no segment matches.
        """
        matches = [
            s for s in self.segments
            if s.target == target and s.center == center
            and (t is None or s.descriptor.covers(t))
        ]
        if not matches:
            raise KeyError(f"No segment for target {target} / center {center}")
        return matches[-1]

    def state_at(self, segment: Segment, t: float) -> State:
        """Evaluate ``segment`` at ``t`` seconds past J2000."""
        return state_at(self.data, segment.descriptor, t, self.options, segment.name)

    def sample_states(
        self,
        segment: Segment,
        times: Iterable[float],
        progress: bool = False,
    ) -> pd.DataFrame:
        """Evaluate ``segment`` at each of ``times`` into a DataFrame.

        Args:
            segment: The segment to sample.
            times: Query times, seconds past J2000.
            progress: Show a progress bar.

        Returns:
            DataFrame with one row per time: et, epoch, x..vz.
        """
        times = np.asarray(list(times), dtype=float)
        iterator: Iterable[float] = times
        if progress:
            from tqdm import tqdm
            iterator = tqdm(times, desc=f"Sampling {segment.name or segment.target}")

        rows = []
        for t in iterator:
            t = float(t)
            state = self.state_at(segment, t)
            rows.append({"et": t, "epoch": et_to_datetime(t), **state.to_dict()})
        return pd.DataFrame(rows, columns=STATE_COLUMNS)

    def segments_frame(self) -> pd.DataFrame:
        """Segment summaries as a DataFrame, in directory order."""
        rows = []
        for s in self.segments:
            row = s.to_dict()
            row["target_name"] = self.body_name(s.target)
            row["center_name"] = self.body_name(s.center)
            rows.append(row)
        return pd.DataFrame(rows)

    def describe(self) -> str:
        """Multi-line summary of the kernel and its segments."""
        h = self.header
        lines = [
            f"File type {h.architecture} and format {h.numeric_format} "
            f"with {len(self.segments)} segments:"
        ]
        for s in self.segments:
            lines.append(
                f"{s.start_jd:.2f}..{s.end_jd:.2f}  "
                f"{self.body_name(s.center)} ({s.center}) -> "
                f"{self.body_name(s.target)} ({s.target})"
            )
        return "\n".join(lines)


def sample_times(segment: Segment, step: float) -> np.ndarray:
    """Evenly spaced times across a segment's coverage, end inclusive."""
    if step <= 0:
        raise ValueError(f"Sampling step must be positive, got {step}")
    d = segment.descriptor
    times = np.arange(d.begin_second, d.end_second, step)
    # float steps can overshoot the end by rounding
    times = times[times < d.end_second]
    return np.append(times, d.end_second)
