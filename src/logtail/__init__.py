"""logtail: rotation-aware log directory tailer.

Follows line-oriented log files in a directory across rotation, truncation
and in-place rewrites, extracts records from raw lines with a regular
expression, and forwards them to a downstream sink at a bounded rate.

Delivery contract: lines from one file in physical order, files in
non-decreasing modification-time order, at most one line of latency.
"""

__version__ = "0.1.0"
