"""
countryblock.freshness
~~~~~~~~~~~~~~~~~~~~~~

Decide whether a family needs to be re-applied.

>>> from datetime import datetime, timezone
>>> jan = datetime(2022, 1, 1, tzinfo=timezone.utc)
>>> should_update(jan, jan, force=False)
False
>>> should_update(jan, None, force=False)
True
"""

from __future__ import annotations

import datetime as _dt


def should_update(
    remote_generated_at: _dt.datetime,
    last_applied_at: _dt.datetime | None,
    force: bool = False,
) -> bool:
    """
    Return *True* when the remote data must be applied.

    Equal timestamps mean the data was already applied.  No prior snapshot
    (``last_applied_at is None``) always updates.
    """
    if force or last_applied_at is None:
        return True
    return remote_generated_at > last_applied_at
