"""
countryblock.defense.base
~~~~~~~~~~~~~~~~~~~~~~~~~

Capability interface every firewall target implements.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import List, Tuple

from countryblock.defense.shell import Runner, run_command
from countryblock.models import ApplyPlan, Family


@dataclass(slots=True)
class ApplyResult:
    """What a reconcile call changed, and what it failed to change."""

    created: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors


class Applier(abc.ABC):
    """Replace a target's rule set for one (country, family) with an :class:`ApplyPlan`."""

    name: str = "applier"
    required_commands: Tuple[str, ...] = ()

    def __init__(self, runner: Runner = run_command) -> None:
        self.runner = runner

    @abc.abstractmethod
    def batch_size(self, prefix_count: int) -> int:
        """Entries per batch this target accepts for *prefix_count* prefixes."""

    def current_batch_count(self, country_code: str, family: Family) -> int:
        """Number of batches the target currently holds for the pair."""
        return 0

    @abc.abstractmethod
    def reconcile(self, country_code: str, family: Family, plan: ApplyPlan) -> ApplyResult:
        """Make the target match *plan*."""
