"""
Example: Decode a synthetic SPK kernel.

This example doesn't need a JPL kernel download. It fits Chebyshev
records to a circular orbit, packs them into a DAF/SPK file with a
DE-style comment area, then reads the file back and compares the
decoded states with the analytic orbit.
"""

import sys
sys.path.insert(0, "src")

import struct
import tempfile
from pathlib import Path

import numpy as np
from numpy.polynomial import chebyshev as C

from spkparse.kernel import SpkKernel, sample_times

RECORD = 1024
DAY = 86400.0

RADIUS_KM = 384400.0
PERIOD_S = 27.321661 * DAY

COMMENTS = (
    b"JPL planetary and lunar ephmeris DEMO1\0"
    b"Integrated 1 January 2000\0\0"
    b"Time span covered by ephemeris:\0\0"
    b"  2000-JAN-01 12:00  to  2000-JAN-31 12:00\0\0"
    b"Bodies included:\0\0"
    b"Earth-Moon Barycenter (3)\0Moon (301)\0Earth (399)\0\0"
    b"Sun/GM(I) values:\0"
    b"GMS   Sun    =  1.32712440041939D+11\0"
    b"GM3   Earth  =  3.98600435436D+05\0"
    b"GMM   =  27068703.24\0"
    b"GMB   =  328900.5596\0"
    b"\0\0\x04"
)


def circular_orbit(t: np.ndarray) -> np.ndarray:
    """Position (km) on a circular orbit in the xy-plane."""
    angle = 2.0 * np.pi * t / PERIOD_S
    return np.stack([RADIUS_KM * np.cos(angle), RADIUS_KM * np.sin(angle), 0.0 * t])


def fit_records(begin: float, intlen: float, n: int, degree: int = 12) -> list:
    """Fit one set of type-2 Chebyshev coefficients per sub-interval."""
    words = []
    for k in range(n):
        mid = begin + (k + 0.5) * intlen
        radius = intlen / 2.0
        words += [mid, radius]
        for axis in range(3):
            coeffs = C.chebinterpolate(
                lambda s: circular_orbit(mid + s * radius)[axis], degree,
            )
            words += coeffs.tolist()
    rsize = 2 + 3 * (degree + 1)
    return words + [begin, intlen, float(rsize), float(n)]


def build_kernel(words: list, begin: float, end: float) -> bytes:
    """Pack one Moon-relative-to-EMB segment into a DAF/SPK file."""
    comments = COMMENTS.ljust(1000, b"\0").ljust(RECORD, b"\0")
    fward = 3
    start = (fward + 1) * (RECORD // 8) + 1
    stop = start + len(words) - 1

    header = struct.pack(
        "<8sII60sIII8s603s28s297s",
        b"DAF/SPK ", 2, 6, b"DEMO".ljust(60), fward, fward, stop + 1,
        b"LTL-IEEE", b"\0" * 603,
        b"FTPSTR:\r:\n:\r\n:\r\x00:\x81:\x10\xce:ENDFTP", b"\0" * 297,
    )
    summary = struct.pack("<2d6i", begin, end, 301, 3, 1, 2, start, stop)
    directory = (struct.pack("<3d", 0, 0, 1) + summary).ljust(RECORD, b"\0")
    names = b"DEMO MOON ORBIT".ljust(RECORD, b" ")
    data = struct.pack(f"<{len(words)}d", *words)
    return header + comments + directory + names + data


def main():
    print("=" * 65)
    print("  spkparse — Synthetic Kernel Demo")
    print("=" * 65)

    begin, intlen, n = 0.0, 4 * DAY, 8
    end = begin + n * intlen
    data = build_kernel(fit_records(begin, intlen, n), begin, end)

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "demo.bsp"
        path.write_bytes(data)
        kernel = SpkKernel.open(path)

    print(f"\n{kernel.describe()}\n")

    catalog = kernel.catalog
    print(f"Kernel {catalog.identity.name}, integrated {catalog.identity.date}")
    for body in catalog.bodies.values():
        print(f"  {body.naif_id:>5}  {body.name:<24} GM = {body.gravitational_parameter}")

    segment = kernel.segment_for(target=301, center=3)
    df = kernel.sample_states(segment, sample_times(segment, 0.5 * DAY))
    truth = circular_orbit(df["et"].to_numpy())
    error = np.abs(df[["x", "y", "z"]].to_numpy().T - truth).max()

    print(f"\nSampled {len(df)} states; max position error {error:.3e} km")
    speed = np.linalg.norm(df[["vx", "vy", "vz"]].to_numpy(), axis=1)
    expected = 2.0 * np.pi * RADIUS_KM / PERIOD_S
    print(f"Mean speed {speed.mean():.6f} km/s (circular: {expected:.6f} km/s)")


if __name__ == "__main__":
    main()
