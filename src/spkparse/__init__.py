"""spkparse: a reader for JPL DAF/SPK binary ephemeris kernels.

Decodes the file record, the legacy comment catalog (kernel identity,
bodies, gravitational parameters), the directory chain of segment
summaries, and Chebyshev segment data.

Modules:
    cursor:     Fixed-width little-endian field extraction.
    header:     DAF file record decoding.
    comments:   Comment-area grammar, body catalog and GM table.
    directory:  Directory chain traversal and segment descriptors.
    segment:    Chebyshev record decoding and state evaluation.
    kernel:     High-level kernel facade over one in-memory buffer.
    config:     Decoder options and DAF layout constants.
    errors:     Error and warning taxonomy.
    viz:        Coverage and state-history plots.
    cli:        Command-line interface.

Example:
    >>> from spkparse.kernel import SpkKernel
    >>>
    >>> kernel = SpkKernel.open("de436.bsp")
    >>> moon = kernel.segment_for(target=301, center=3)
    >>> print(kernel.state_at(moon, 0.0).position)
"""

__version__ = "0.1.0"
