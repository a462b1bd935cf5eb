#!/usr/bin/env python3
"""
Unit tests for spkparse: DAF/SPK kernel decoding.

Kernels are built in memory with ``struct`` so every field, pointer and
coefficient is known exactly.
"""
import struct

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
from click.testing import CliRunner

from spkparse.cli import main
from spkparse.comments import (
    CommentScanner,
    GMStopReason,
    comment_area,
    extract_catalog,
    gm_targets,
    parse_fortran_float,
    read_bodies,
    read_gm_table,
    read_identity,
    read_span,
)
from spkparse.config import DecoderOptions
from spkparse.cursor import ByteCursor
from spkparse.directory import SegmentDescriptor, walk_directory
from spkparse.errors import (
    BadArchitectureTag,
    DuplicateBodyIdentifier,
    MalformedDirectory,
    MalformedSegment,
    MarkerNotFound,
    OutOfRange,
    SpkError,
    Truncated,
    UnboundedChain,
    UnparsableNumeric,
    UnrecognizedBodyIdentifier,
    UnsupportedDataType,
    UnsupportedFrame,
)
from spkparse.header import FileHeader
from spkparse.kernel import Segment, SpkKernel, sample_times
from spkparse.segment import (
    chebyshev,
    chebyshev_derivative,
    jd,
    read_metadata,
    record_index,
    state_at,
)


RECORD = 1024
DAY = 86400.0
FTPSTR = b"FTPSTR:\r:\n:\r\n:\r\x00:\x81:\x10\xce:ENDFTP"

COMMENTS = (
    b"; de436.bsp LOG FILE\0\0"
    b"JPL planetary and lunar ephmeris DE436\0"
    b"Integrated 21 March 2016\0\0"
    b"Time span covered by ephemeris:\0\0"
    b"  1549-DEC-21 00:00  to  2650-JAN-25 00:00\0\0"
    b"Bodies included:\0\0"
    b"Mercury Barycenter (1)\0Venus Barycenter (2)\0Earth-Moon Barycenter (3)\0"
    b"Mars Barycenter (4)\0Jupiter Barycenter (5)\0Sun (10)\0Mercury (199)\0"
    b"Venus (299)\0Moon (301)\0Earth (399)\0\0"
    b"Sun/GM(I) values:\0"
    b"GMS   Sun      =  1.32712440041939D+11\0"
    b"GM1   Mercury  =  2.2031780000D+04\0"
    b"GM2   Venus    =  3.2485859200D+05\0"
    b"GM3   Earth    =  3.9860043550D+05\0"
    b"GM4   Mars     =  4.2828375214D+04\0"
    b"GMM   =  27068703.24\0"
    b"GMB   =  328900.5596\0"
    b"GMX   Unknown  =  1.0D+00\0"
    b"GM5   Jupiter  =  1.2671276480D+08\0"
    b"\0\0\x04"
)
SUN_GM = 1.32712440041939e11


# ═══════════════════════════════════════════════════════════════
# SYNTHETIC KERNEL BUILDERS
# ═══════════════════════════════════════════════════════════════
def _header_bytes(
    fward: int = 2,
    bward: int = 2,
    free: int = 1,
    nd: int = 2,
    ni: int = 6,
    arch: bytes = b"DAF/SPK ",
    name: bytes = b"NIO2SPK",
    fmt: bytes = b"LTL-IEEE",
) -> bytes:
    return struct.pack(
        "<8sII60sIII8s603s28s297s",
        arch, nd, ni, name.ljust(60), fward, bward, free, fmt,
        b"\0" * 603, FTPSTR, b"\0" * 297,
    )


def _comment_records(text: bytes) -> bytes:
    """Split text into 1000-character comment records padded to 1024."""
    chunks = [text[i:i + 1000] for i in range(0, len(text), 1000)] or [b""]
    return b"".join(c.ljust(RECORD, b"\0") for c in chunks)


def _chebyshev_words(init: float, intlen: float, records: list) -> list:
    """Lay out Chebyshev records plus the trailing [init, intlen, rsize, n]."""
    words = []
    for k, coeffs in enumerate(records):
        words += [init + (k + 0.5) * intlen, intlen / 2.0]
        words += [float(c) for axis in coeffs for c in axis]
    rsize = 2 + sum(len(axis) for axis in records[0])
    return words + [init, intlen, float(rsize), float(len(records))]


def _type2_records() -> list:
    return [
        [[k + 1, 0.5, 0.25], [10.0 * (k + 1), 0.0, 0.0], [-(k + 1), 1.0, 0.0]]
        for k in range(4)
    ]


def _type3_records() -> list:
    base = [[1, 2], [3, 4], [5, 6], [7, 8], [9, 10], [11, 12]]
    return [base, [[a + 100, b] for a, b in base]]


MOON = dict(name="SEG-MOON", target=301, center=3, frame=1, data_type=2,
            begin=0.0, end=4 * DAY, words=_chebyshev_words(0.0, DAY, _type2_records()))
EARTH = dict(name="SEG-EARTH", target=399, center=3, frame=1, data_type=3,
             begin=0.0, end=2 * DAY, words=_chebyshev_words(0.0, DAY, _type3_records()))
MARS = dict(name="SEG-MARS", target=499, center=4, frame=1, data_type=1,
            begin=0.0, end=DAY, words=[0.0] * 8)
JUPITER = dict(name="SEG-JUPITER", target=5, center=0, frame=17, data_type=2,
               begin=0.0, end=4 * DAY, words=_chebyshev_words(0.0, DAY, _type2_records()))


def _spk_bytes(
    segments: list = (MOON, EARTH, MARS, JUPITER),
    comments: bytes = COMMENTS,
    arch: bytes = b"DAF/SPK ",
) -> bytes:
    """A complete single-directory-block kernel."""
    comment_blob = _comment_records(comments)
    fward = 2 + len(comment_blob) // RECORD

    # Data begins in the record after the name record
    addr = (fward + 1) * (RECORD // 8) + 1
    summaries, names, data = b"", b"", b""
    for seg in segments:
        words = seg["words"]
        start, end = addr, addr + len(words) - 1
        summaries += struct.pack(
            "<2d6i", seg["begin"], seg["end"], seg["target"], seg["center"],
            seg["frame"], seg["data_type"], start, end,
        )
        names += seg["name"].ljust(40).encode()
        data += struct.pack(f"<{len(words)}d", *words)
        addr = end + 1

    directory = (struct.pack("<3d", 0, 0, len(segments)) + summaries).ljust(RECORD, b"\0")
    header = _header_bytes(fward=fward, bward=fward, free=addr, arch=arch)
    return header + comment_blob + directory + names.ljust(RECORD, b" ") + data


def _chain_bytes(counts: list, cycle_to: int = 0, declared: dict = None) -> bytes:
    """Directory blocks at records 2, 4, 6, ... with names right after each."""
    declared = declared or {}
    last = 2 + 2 * (len(counts) - 1)
    blocks = [_header_bytes(fward=2, bward=last)]
    for i, n in enumerate(counts):
        block = 2 + 2 * i
        next_block = block + 2 if i < len(counts) - 1 else cycle_to
        prev_block = block - 2 if i else 0
        summaries = b"".join(
            struct.pack("<2d6i", float(i), float(i) + 1.0, 1000 * i + j, 0, 1, 2, 1, 2)
            for j in range(n)
        )
        control = struct.pack("<3d", next_block, prev_block, declared.get(i, n))
        blocks.append((control + summaries).ljust(RECORD, b"\0"))
        names = b"".join(f"SEG{i}-{j}".ljust(40).encode() for j in range(n))
        blocks.append(names.ljust(RECORD, b" "))
    return b"".join(blocks)


@pytest.fixture
def kernel_bytes() -> bytes:
    return _spk_bytes()


@pytest.fixture
def kernel(kernel_bytes) -> SpkKernel:
    return SpkKernel.from_bytes(kernel_bytes)


# ═══════════════════════════════════════════════════════════════
# BYTE CURSOR
# ═══════════════════════════════════════════════════════════════
class TestByteCursor:
    def test_reads_little_endian_fields(self):
        buf = struct.pack("<Iid", 7, -82, 2.5) + b"DE436\0\0  "
        cur = ByteCursor(buf)
        assert cur.u32() == 7
        assert cur.i32() == -82
        assert cur.f64() == 2.5
        assert cur.text(9) == "DE436"
        assert cur.remaining == 0

    def test_skip_and_seek(self):
        cur = ByteCursor(struct.pack("<II", 1, 2))
        cur.skip(4)
        assert cur.u32() == 2
        assert cur.seek(0).u32() == 1

    def test_truncated_leaves_offset(self):
        cur = ByteCursor(b"\x01\x02\x03")
        with pytest.raises(Truncated) as exc:
            cur.u32()
        assert exc.value.needed == 4
        assert exc.value.available == 3
        assert cur.offset == 0

    def test_truncated_is_spk_error(self):
        with pytest.raises(SpkError):
            ByteCursor(b"").f64()


# ═══════════════════════════════════════════════════════════════
# FILE HEADER
# ═══════════════════════════════════════════════════════════════
class TestFileHeader:
    def test_round_trip(self):
        h = FileHeader.decode(_header_bytes(fward=3, bward=7, free=12345))
        assert h.architecture == "DAF/SPK"
        assert h.n_double_precision == 2
        assert h.n_integers == 6
        assert h.internal_name == "NIO2SPK"
        assert h.first_summary_block == 3
        assert h.last_summary_block == 7
        assert h.first_free_address == 12345
        assert h.numeric_format == "LTL-IEEE"
        assert h.integrity == FTPSTR.decode("latin-1")

    def test_derived_sizes(self):
        h = FileHeader.decode(_header_bytes(fward=5))
        assert h.summary_doubles == 5
        assert h.summary_bytes == 40
        assert h.comment_blocks == 3

    def test_skip_integrity(self):
        h = FileHeader.decode(_header_bytes(), DecoderOptions(decode_integrity=False))
        assert h.integrity is None

    def test_bad_architecture_tag(self):
        with pytest.raises(BadArchitectureTag) as exc:
            FileHeader.decode(_header_bytes(arch=b"DAF/CK  "))
        assert exc.value.tag == "DAF/CK"

    def test_lenient_accepts_naif_daf(self):
        h = FileHeader.decode(_header_bytes(arch=b"NAIF/DAF"), DecoderOptions.lenient())
        assert h.architecture == "NAIF/DAF"

    def test_truncated_record(self):
        with pytest.raises(Truncated):
            FileHeader.decode(_header_bytes()[:500])

    def test_to_dict(self):
        d = FileHeader.decode(_header_bytes()).to_dict()
        assert d["architecture"] == "DAF/SPK"
        assert d["nd"] == 2


# ═══════════════════════════════════════════════════════════════
# COMMENT CATALOG
# ═══════════════════════════════════════════════════════════════
class TestCommentGrammar:
    def test_identity(self):
        ident = read_identity(CommentScanner(COMMENTS))
        assert ident.name == "DE436"
        assert ident.date == "21 March 2016"

    def test_identity_marker_missing(self):
        with pytest.raises(MarkerNotFound) as exc:
            read_identity(CommentScanner(b"no markers here\0"))
        assert exc.value.marker == DecoderOptions().kernel_marker

    def test_span(self):
        span = read_span(CommentScanner(COMMENTS))
        assert span.start == "1549-DEC-21 00:00"
        assert span.end == "2650-JAN-25 00:00"

    def test_span_same_line(self):
        span = read_span(CommentScanner(b"span covered: 2000 JAN 01 to 2050 JAN 01\0"))
        assert (span.start, span.end) == ("2000 JAN 01", "2050 JAN 01")

    def test_span_absent(self):
        assert read_span(CommentScanner(b"nothing\0")) is None

    def test_span_without_separator(self):
        with pytest.raises(MarkerNotFound) as exc:
            read_span(CommentScanner(b"span covered: 2000 JAN 01\0"))
        assert exc.value.marker == "to"

    def test_bodies(self):
        bodies = read_bodies(CommentScanner(COMMENTS))
        assert len(bodies) == 10
        assert bodies[0].name == "Mercury Barycenter"
        assert bodies[0].naif_id == 1
        assert bodies[-1].name == "Earth"
        assert bodies[-1].naif_id == 399

    def test_bodies_negative_spacecraft_id(self):
        bodies = read_bodies(CommentScanner(b"Bodies included:\0\0Voyager 1 (-31)\0\0"))
        assert bodies[0].naif_id == -31

    def test_bodies_bad_id(self):
        with pytest.raises(UnparsableNumeric):
            read_bodies(CommentScanner(b"Bodies included:\0\0Probe (abc)\0\0"))

    def test_bodies_id_out_of_int16_range(self):
        with pytest.raises(UnparsableNumeric):
            read_bodies(CommentScanner(b"Bodies included:\0\0Probe (-40000)\0\0"))

    def test_bodies_duplicate_keeps_first(self):
        bodies = read_bodies(CommentScanner(b"Bodies included:\0\0A (1)\0B (1)\0\0"))
        assert [b.name for b in bodies] == ["A"]

    def test_bodies_duplicate_is_recorded(self):
        warnings = []
        read_bodies(
            CommentScanner(b"Bodies included:\0\0A (1)\0B (1)\0\0"), warnings=warnings,
        )
        assert len(warnings) == 1
        assert isinstance(warnings[0], DuplicateBodyIdentifier)
        assert (warnings[0].naif_id, warnings[0].name, warnings[0].kept) == (1, "B", "A")

    def test_bodies_marker_missing(self):
        with pytest.raises(MarkerNotFound):
            read_bodies(CommentScanner(b"Bodies:\0\0Sun (10)\0\0"))

    def test_fortran_float(self):
        assert parse_fortran_float("1.5D-03") == pytest.approx(1.5e-3)
        assert parse_fortran_float("1.32712440018D+11") == 1.32712440018e11
        with pytest.raises(UnparsableNumeric):
            parse_fortran_float("4.28X+04")


class TestGMTable:
    def test_planet_three_writes_barycenter_convention_only(self):
        scan = read_gm_table(CommentScanner(
            b"Sun/GM(I)\0GM3 Earth = 1.32712440018D+11\0"
        ))
        assert scan.values == {399: 1.32712440018e11}
        assert 3 not in scan.values

    def test_inner_planets_dual_write(self):
        assert gm_targets("1") == (199, 1)
        assert gm_targets("2") == (299, 2)
        assert gm_targets("3") == (399,)
        assert gm_targets("4") == (4,)
        assert gm_targets("9") == (9,)

    def test_named_targets(self):
        assert gm_targets("S") == (10,)
        assert gm_targets("M") == (301,)
        assert gm_targets("B") == (3,)
        assert gm_targets("X") == ()
        assert gm_targets("0") == ()

    def test_two_digit_index_maps_to_itself(self):
        assert gm_targets("12") == (12,)
        scan = read_gm_table(CommentScanner(b"Sun/GM(I)\0GM10 Foo = 1.0D+02\0"))
        assert scan.values == {10: 100.0}
        assert scan.warnings == []

    def test_moon_derived_from_sun(self):
        scan = read_gm_table(CommentScanner(
            b"Sun/GM(I)\0GMS Sun = 1.32712440018D+11\0GMM = 81.30056\0"
        ))
        assert scan.sun_gm == 1.32712440018e11
        assert scan.values[301] == pytest.approx(1.32712440018e11 / 81.30056, rel=1e-9)

    def test_ratio_before_sun(self):
        scan = read_gm_table(CommentScanner(b"Sun/GM(I)\0GMM = 81.30056\0"))
        assert scan.stop_reason is GMStopReason.MISSING_SUN_GM
        assert scan.values == {}

    def test_stop_no_value(self):
        scan = read_gm_table(CommentScanner(
            b"Sun/GM(I)\0GMS Sun = 1.0D+11\0GM end of table\0GM4 Mars = 4.0D+04\0"
        ))
        assert scan.stop_reason is GMStopReason.NO_VALUE
        assert scan.table_ended
        assert scan.stop_line.strip() == "end of table"
        assert 4 not in scan.values

    def test_stop_unparsable(self):
        scan = read_gm_table(CommentScanner(
            b"Sun/GM(I)\0GMS Sun = 1.0D+11\0GM4 Mars = 4.28X+04\0"
        ))
        assert scan.stop_reason is GMStopReason.UNPARSABLE
        assert not scan.table_ended
        assert scan.values == {10: 1.0e11}
        assert scan.lines_read == 1

    def test_strict_unparsable_raises(self):
        with pytest.raises(UnparsableNumeric) as exc:
            read_gm_table(
                CommentScanner(b"Sun/GM(I)\0GM4 Mars = 4.28X+04\0"),
                DecoderOptions(strict_gm=True),
            )
        assert exc.value.token == "4.28X+04"

    def test_unrecognized_identifier_is_recorded(self):
        scan = read_gm_table(CommentScanner(COMMENTS))
        assert len(scan.warnings) == 1
        warning = scan.warnings[0]
        assert isinstance(warning, UnrecognizedBodyIdentifier)
        assert warning.identifier == "X"
        # scanning continued past the unknown line
        assert scan.values[5] == pytest.approx(1.2671276480e8)
        assert scan.stop_reason is GMStopReason.EXHAUSTED

    def test_gm_marker_missing(self):
        with pytest.raises(MarkerNotFound):
            read_gm_table(CommentScanner(b"GMS Sun = 1.0D+11\0"))


class TestCatalog:
    def test_extract(self):
        catalog = extract_catalog(COMMENTS)
        assert catalog.identity.name == "DE436"
        assert catalog.span.end == "2650-JAN-25 00:00"
        assert len(catalog.bodies) == 10

    def test_warnings_cover_bodies_and_gm_table(self):
        text = COMMENTS.replace(b"Earth (399)\0", b"Luna (301)\0Earth (399)\0")
        catalog = extract_catalog(text)
        assert catalog.body(301).name == "Moon"
        kinds = [type(w) for w in catalog.warnings]
        assert kinds == [DuplicateBodyIdentifier, UnrecognizedBodyIdentifier]

    def test_gravitational_parameters(self):
        bodies = extract_catalog(COMMENTS).bodies
        assert bodies[10].gravitational_parameter == pytest.approx(SUN_GM)
        assert bodies[1].gravitational_parameter == pytest.approx(2.2031780000e4)
        assert bodies[199].gravitational_parameter == bodies[1].gravitational_parameter
        assert bodies[2].gravitational_parameter == bodies[299].gravitational_parameter
        assert bodies[399].gravitational_parameter == pytest.approx(3.9860043550e5)
        assert bodies[301].gravitational_parameter == pytest.approx(
            SUN_GM / 27068703.24, rel=1e-9
        )
        assert bodies[3].gravitational_parameter == pytest.approx(
            SUN_GM / 328900.5596, rel=1e-9
        )

    def test_unknown_gm_is_none(self):
        text = COMMENTS.replace(b"GM5   Jupiter  =  1.2671276480D+08\0", b"")
        body = extract_catalog(text).body(5)
        assert body.gravitational_parameter is None
        assert not body.gm_known

    def test_naif_ids_distinct(self):
        bodies = extract_catalog(COMMENTS).bodies
        ids = [b.naif_id for b in bodies.values()]
        assert len(ids) == len(set(ids))
        assert all(k == b.naif_id for k, b in bodies.items())

    def test_find_by_name(self):
        catalog = extract_catalog(COMMENTS)
        assert [b.naif_id for b in catalog.find("moon")] == [301]

    def test_to_frame(self):
        df = extract_catalog(COMMENTS).to_frame()
        assert isinstance(df, pd.DataFrame)
        assert len(df) == 10
        assert list(df.columns) == ["naif_id", "name", "gm_km3_s2"]

    def test_comment_area_uses_first_1000_chars_and_stops_at_eot(self):
        text = b"x" * 1200 + b"\x04trailing junk"
        buffer = _header_bytes(fward=4) + _comment_records(text)
        area = comment_area(buffer, FileHeader.decode(buffer))
        assert area == b"x" * 1200


# ═══════════════════════════════════════════════════════════════
# DIRECTORY CHAIN
# ═══════════════════════════════════════════════════════════════
class TestDirectoryWalker:
    def test_chain_order(self):
        counts = [3, 25, 1, 4]
        buffer = _chain_bytes(counts)
        entries = walk_directory(buffer, FileHeader.decode(buffer))
        assert len(entries) == sum(counts)

        expected = [1000 * i + j for i, n in enumerate(counts) for j in range(n)]
        assert [d.target_id for d, _ in entries] == expected
        assert entries[0][1] == "SEG0-0"
        assert entries[-1][1] == "SEG3-3"

    def test_word_addresses_become_half_open_offsets(self):
        buffer = _chain_bytes([1])
        descriptor, _ = walk_directory(buffer, FileHeader.decode(buffer))[0]
        assert descriptor.start_index == 0
        assert descriptor.end_index == 2
        assert descriptor.word_length == 2

    def test_cycle_detected(self):
        buffer = _chain_bytes([2, 2, 2], cycle_to=4)
        with pytest.raises(UnboundedChain) as exc:
            walk_directory(buffer, FileHeader.decode(buffer))
        assert exc.value.block == 4

    def test_self_loop_detected(self):
        buffer = _chain_bytes([1], cycle_to=2)
        with pytest.raises(UnboundedChain):
            walk_directory(buffer, FileHeader.decode(buffer))

    def test_max_blocks_bound(self):
        buffer = _chain_bytes([1, 1, 1])
        with pytest.raises(UnboundedChain):
            walk_directory(
                buffer, FileHeader.decode(buffer), DecoderOptions(max_directory_blocks=2),
            )

    def test_pointer_past_end(self):
        buffer = _chain_bytes([1], cycle_to=99)
        with pytest.raises(Truncated):
            walk_directory(buffer, FileHeader.decode(buffer))

    def test_summary_count_over_capacity(self):
        buffer = _chain_bytes([2], declared={0: 26})
        with pytest.raises(MalformedDirectory):
            walk_directory(buffer, FileHeader.decode(buffer))

    def test_non_spk_layout(self):
        buffer = _header_bytes(nd=3) + _chain_bytes([1])[RECORD:]
        with pytest.raises(MalformedDirectory):
            walk_directory(buffer, FileHeader.decode(buffer))

    def test_empty_block(self):
        buffer = _chain_bytes([0])
        assert walk_directory(buffer, FileHeader.decode(buffer)) == []


# ═══════════════════════════════════════════════════════════════
# SEGMENT DATA
# ═══════════════════════════════════════════════════════════════
class TestChebyshev:
    def test_matches_numpy_chebval(self):
        coeffs = np.array([[1.0, -2.0, 0.5, 0.125], [3.0, 0.0, 1.0, -1.0]])
        for s in (-1.0, -0.3, 0.0, 0.7, 1.0):
            expected = [np.polynomial.chebyshev.chebval(s, c) for c in coeffs]
            assert np.allclose(chebyshev(coeffs, s), expected)

    def test_derivative_matches_numpy(self):
        coeffs = np.array([[1.0, -2.0, 0.5, 0.125]])
        for s in (-0.9, 0.0, 0.4):
            expected = np.polynomial.chebyshev.chebval(
                s, np.polynomial.chebyshev.chebder(coeffs[0])
            )
            assert chebyshev_derivative(coeffs, s)[0] == pytest.approx(expected)

    def test_constant_series(self):
        assert chebyshev(np.array([[4.0]]), 0.3)[0] == 4.0


class TestSegmentDecoder:
    def _moon(self, kernel):
        return kernel.segment_for(301, 3)

    def test_metadata(self, kernel):
        meta = read_metadata(kernel.data, self._moon(kernel).descriptor)
        assert (meta.init, meta.intlen, meta.rsize, meta.n) == (0.0, DAY, 11, 4)

    def test_type2_position_at_record_mid(self, kernel):
        state = kernel.state_at(self._moon(kernel), 0.5 * DAY)
        assert np.allclose(state.position, [0.75, 10.0, -1.0])

    def test_type2_velocity_is_derivative(self, kernel):
        state = kernel.state_at(self._moon(kernel), 0.5 * DAY)
        radius = DAY / 2
        assert np.allclose(state.velocity, [0.5 / radius, 0.0, 1.0 / radius])

    def test_type3_position_and_velocity(self, kernel):
        segment = kernel.segment_for(399, 3)
        state = kernel.state_at(segment, 0.75 * DAY)
        assert np.allclose(state.position, [2.0, 5.0, 8.0])
        assert np.allclose(state.velocity, [11.0, 14.0, 17.0])

        state = kernel.state_at(segment, 1.75 * DAY)
        assert np.allclose(state.position, [102.0, 105.0, 108.0])

    def test_evaluation_is_pure(self, kernel):
        segment = self._moon(kernel)
        a = kernel.state_at(segment, 1.3 * DAY)
        b = kernel.state_at(segment, 1.3 * DAY)
        assert np.array_equal(a.position, b.position)
        assert np.array_equal(a.velocity, b.velocity)

    def test_end_time_clamps_to_last_record(self, kernel):
        segment = self._moon(kernel)
        meta = read_metadata(kernel.data, segment.descriptor)
        assert record_index(meta, 4 * DAY) == 3
        assert record_index(meta, -5.0) == 0

        at_end = kernel.state_at(segment, 4 * DAY)
        assert np.allclose(at_end.position, [4.75, 40.0, -3.0])
        for eps in (1.0, 1e-3, 1e-6):
            near = kernel.state_at(segment, 4 * DAY - eps)
            assert np.allclose(near.position, at_end.position, atol=eps * 1e-3)

    def test_out_of_range(self, kernel):
        segment = self._moon(kernel)
        with pytest.raises(OutOfRange) as exc:
            kernel.state_at(segment, 4 * DAY + 1.0)
        assert exc.value.end == 4 * DAY
        with pytest.raises(OutOfRange):
            kernel.state_at(segment, -1.0)

    def test_unsupported_data_type(self, kernel):
        with pytest.raises(UnsupportedDataType) as exc:
            kernel.state_at(kernel.segment_for(499, 4), 0.0)
        assert exc.value.data_type == 1

    def test_unsupported_frame(self, kernel):
        with pytest.raises(UnsupportedFrame) as exc:
            kernel.state_at(kernel.segment_for(5, 0), 0.0)
        assert exc.value.frame_id == 17

    def test_inconsistent_record_count(self):
        words = _chebyshev_words(0.0, DAY, _type2_records())
        words[-1] = 5.0
        bad = dict(MOON, words=words)
        buffer = _spk_bytes(segments=[bad])
        header = FileHeader.decode(buffer)
        descriptor, name = walk_directory(buffer, header)[0]
        with pytest.raises(MalformedSegment):
            state_at(buffer, descriptor, DAY, name=name)

    def test_jd(self):
        assert jd(0.0) == 2451545.0
        assert jd(DAY) == 2451546.0


# ═══════════════════════════════════════════════════════════════
# KERNEL FACADE
# ═══════════════════════════════════════════════════════════════
class TestKernel:
    def test_load(self, kernel):
        assert kernel.header.architecture == "DAF/SPK"
        assert kernel.catalog.identity.name == "DE436"
        assert [s.name for s in kernel.segments] == [
            "SEG-MOON", "SEG-EARTH", "SEG-MARS", "SEG-JUPITER",
        ]
        assert kernel.errors == {}

    def test_open(self, tmp_path, kernel_bytes):
        path = tmp_path / "synthetic.bsp"
        path.write_bytes(kernel_bytes)
        kernel = SpkKernel.open(path)
        assert kernel.path == path
        assert len(kernel.segments) == 4

    def test_bad_file_raises(self):
        with pytest.raises(BadArchitectureTag):
            SpkKernel.from_bytes(_spk_bytes(arch=b"DAF/PCK "))

    def test_catalog_failure_is_isolated(self):
        kernel = SpkKernel.from_bytes(_spk_bytes(comments=b"no catalog here\0\x04"))
        assert kernel.catalog is None
        assert isinstance(kernel.errors["catalog"], MarkerNotFound)
        assert len(kernel.segments) == 4
        assert kernel.body_name(301) == "NAIF 301"

    def test_strict_reraises(self):
        with pytest.raises(MarkerNotFound):
            SpkKernel.from_bytes(
                _spk_bytes(comments=b"no catalog here\0\x04"),
                DecoderOptions(strict=True),
            )

    def test_segment_for_missing(self, kernel):
        with pytest.raises(KeyError):
            kernel.segment_for(999, 0)

    def test_segment_for_time_filter(self, kernel):
        with pytest.raises(KeyError):
            kernel.segment_for(399, 3, t=10 * DAY)

    def test_segments_frame(self, kernel):
        df = kernel.segments_frame()
        assert len(df) == 4
        assert df.loc[0, "target_name"] == "Moon"
        assert df.loc[0, "center_name"] == "Earth-Moon Barycenter"
        assert df.loc[0, "start_jd"] == 2451545.0

    def test_sample_states(self, kernel):
        segment = kernel.segment_for(301, 3)
        df = kernel.sample_states(segment, [0.5 * DAY, 1.5 * DAY])
        assert list(df.columns) == ["et", "epoch", "x", "y", "z", "vx", "vy", "vz"]
        assert df["x"].tolist() == pytest.approx([0.75, 1.75])

    def test_sample_times_include_end(self, kernel):
        times = sample_times(kernel.segment_for(301, 3), DAY)
        assert times.tolist() == [0.0, DAY, 2 * DAY, 3 * DAY, 4 * DAY]
        with pytest.raises(ValueError):
            sample_times(kernel.segment_for(301, 3), 0.0)

    def test_sample_times_fractional_step_stays_in_coverage(self, kernel):
        short = Segment(SegmentDescriptor(1.0, 1.3, 301, 3, 1, 2, 0, 48), "SHORT")
        times = sample_times(short, 0.1)
        assert times[-1] == 1.3
        assert (times <= 1.3).all()
        assert len(times) == 4

        moon = kernel.segment_for(301, 3)
        df = kernel.sample_states(moon, sample_times(moon, 0.3 * DAY))
        assert df["et"].iloc[-1] == 4 * DAY
        assert df["et"].is_monotonic_increasing

    def test_describe(self, kernel):
        text = kernel.describe()
        assert "with 4 segments" in text
        assert "Earth-Moon Barycenter (3) -> Moon (301)" in text

    def test_comments_text(self, kernel):
        assert "Bodies included:" in kernel.comments()


# ═══════════════════════════════════════════════════════════════
# VISUALIZATION & CLI
# ═══════════════════════════════════════════════════════════════
class TestViz:
    def test_coverage_plot(self, kernel, tmp_path):
        from spkparse.viz import plot_segment_coverage
        out = tmp_path / "coverage.png"
        fig = plot_segment_coverage(kernel.segments_frame(), save_path=out)
        assert out.exists()
        assert len(fig.axes[0].patches) == 4

    def test_empty_coverage_plot_is_saved(self, tmp_path):
        from spkparse.viz import plot_segment_coverage
        out = tmp_path / "empty.png"
        fig = plot_segment_coverage(pd.DataFrame(), save_path=out)
        assert out.exists()
        assert len(fig.axes[0].patches) == 0

    def test_state_plot(self, kernel):
        from spkparse.viz import plot_state_history
        df = kernel.sample_states(kernel.segment_for(399, 3), [0.0, DAY, 2 * DAY])
        fig = plot_state_history(df)
        assert len(fig.axes) == 2


class TestCLI:
    @pytest.fixture
    def path(self, tmp_path, kernel_bytes):
        p = tmp_path / "synthetic.bsp"
        p.write_bytes(kernel_bytes)
        return str(p)

    def test_header(self, path):
        result = CliRunner().invoke(main, ["header", path])
        assert result.exit_code == 0
        assert "LTL-IEEE" in result.output

    def test_bodies(self, path):
        result = CliRunner().invoke(main, ["bodies", path])
        assert result.exit_code == 0
        assert "DE436" in result.output

    def test_segments(self, path):
        result = CliRunner().invoke(main, ["segments", path])
        assert result.exit_code == 0
        assert "4 segments" in result.output

    def test_state(self, path):
        result = CliRunner().invoke(
            main, ["state", path, "-t", "301", "-c", "3", "--et", "43200"]
        )
        assert result.exit_code == 0
        assert "State" in result.output

    def test_state_missing_segment(self, path):
        result = CliRunner().invoke(main, ["state", path, "-t", "999", "-c", "0"])
        assert result.exit_code == 1

    def test_sample_to_csv(self, path, tmp_path):
        out = tmp_path / "moon.csv"
        result = CliRunner().invoke(
            main, ["sample", path, "-t", "301", "-c", "3", "--output", str(out)]
        )
        assert result.exit_code == 0
        assert len(pd.read_csv(out)) == 5

    def test_sample_plot_with_progress(self, path, tmp_path):
        out = tmp_path / "earth.png"
        result = CliRunner().invoke(
            main,
            ["sample", path, "-t", "399", "-c", "3", "-s", "43200",
             "--plot", str(out), "--progress"],
        )
        assert result.exit_code == 0
        assert "Sampled 5 states" in result.output
        assert out.exists()

    def test_coverage(self, path, tmp_path):
        out = tmp_path / "coverage.png"
        result = CliRunner().invoke(main, ["coverage", path, "--output", str(out)])
        assert result.exit_code == 0
        assert out.exists()

    def test_coverage_without_segments(self, tmp_path):
        p = tmp_path / "empty.bsp"
        p.write_bytes(_spk_bytes(segments=[]))
        out = tmp_path / "coverage.png"
        result = CliRunner().invoke(main, ["coverage", str(p), "--output", str(out)])
        assert result.exit_code == 0
        assert out.exists()

    def test_comments(self, path):
        result = CliRunner().invoke(main, ["comments", path])
        assert result.exit_code == 0
        assert "Bodies included:" in result.output
        assert "GMS   Sun" in result.output

    def test_comments_past_end_of_file(self, tmp_path):
        p = tmp_path / "short.bsp"
        p.write_bytes(_header_bytes(fward=5, bward=5))
        result = CliRunner().invoke(main, ["comments", str(p)])
        assert result.exit_code == 1
        assert "Truncated" in result.output
        assert not isinstance(result.exception, Truncated)

    def test_not_a_kernel(self, tmp_path):
        p = tmp_path / "junk.bin"
        p.write_bytes(b"\0" * 2048)
        result = CliRunner().invoke(main, ["segments", str(p)])
        assert result.exit_code == 1
