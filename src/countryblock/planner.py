"""
countryblock.planner
~~~~~~~~~~~~~~~~~~~~

Partition a prefix list into capacity-bounded batches.

Cloud firewalls cap the number of source ranges per rule (5000 on Google
Cloud), so a large country is spread over several rules whose names embed
the batch index.  Indices restart at zero for every (country, family).
"""

from __future__ import annotations

import logging
from typing import Sequence

from countryblock.models import ApplyPlan, Batch
from countryblock.naming import NamingContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 5000


def plan(
    prefixes: Sequence[str],
    max_batch_size: int,
    naming: NamingContext,
    previous_batch_count: int = 0,
) -> ApplyPlan:
    """
    Split *prefixes* into consecutive batches of at most *max_batch_size*.

    Parameters
    ----------
    prefixes:
        CIDR strings in source order.  They are not de-duplicated here.
    max_batch_size:
        Per-rule entry limit of the target; must be positive.
    naming:
        Country and family the rule names are derived from.
    previous_batch_count:
        Number of batches the target held before this run, so the applier
        can remove indices the new plan no longer uses.
    """
    if max_batch_size <= 0:
        raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
    if previous_batch_count < 0:
        raise ValueError(f"previous_batch_count must be >= 0, got {previous_batch_count}")

    items = list(prefixes)
    batches = tuple(
        Batch(
            index=index,
            members=tuple(items[start : start + max_batch_size]),
            rule_name=naming.rule_name(index),
        )
        for index, start in enumerate(range(0, len(items), max_batch_size))
    )
    result = ApplyPlan(naming=naming, batches=batches, previous_batch_count=previous_batch_count)
    logger.debug(
        "Planned %d prefixes for %s into %d batch(es), %d stale",
        len(items),
        naming.rule_prefix,
        result.batch_count,
        len(result.stale_indices),
    )
    return result
