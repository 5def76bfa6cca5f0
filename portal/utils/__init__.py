"""Shared utility functions for the portal client.

Re-exports the helpers so consumers can ``from portal.utils import as_utc``
while full absolute imports remain supported.
"""

from portal.utils.dates import add_months, as_utc, utc_now

__all__ = [
    "add_months",
    "as_utc",
    "utc_now",
]
