"""
resultflow - Result ingestion for streaming anomaly detection jobs.

Persist engine output, wait on flushes, know when the stream is done.
"""

from resultflow.processor import AutodetectResultProcessor

__version__ = "0.1.0"
__all__ = ["AutodetectResultProcessor", "__version__"]
