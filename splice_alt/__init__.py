"""
Splice Alt Backend: Metadata Correlation Engine

Pairs downloaded sample files with the API records that describe them and
writes a JSON sidecar next to each file.

Pipeline:
    [extension] -> stream_reconstructor -> record_extractor -> correlation_cache
                                                                    |
    [extension] -> download_correlator <----------------------------+
                          |
                          v
                    sidecar_writer -> [extension / disk]

notifications taps the flow after extraction and after each sidecar write.
"""

__version__ = "0.4.0"
