"""
countryblock.models
~~~~~~~~~~~~~~~~~~~

Immutable value objects passed between pipeline stages.

Every stage takes only what it needs: the source adapter produces a
:class:`SourceDocument`, the store persists :class:`PrefixSet` objects as
:class:`Snapshot` files, the planner turns prefixes into an
:class:`ApplyPlan` and the pipeline records the outcome of each address
family in a :class:`FamilyReport`.
"""

from __future__ import annotations

import datetime as _dt
import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Tuple

from countryblock.naming import NamingContext


class Family(str, Enum):
    """Address family, always derived from CIDR syntax."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def ipset_family(self) -> str:
        return "inet6" if self is Family.IPV6 else "inet"

    @property
    def iptables_bin(self) -> str:
        return "ip6tables" if self is Family.IPV6 else "iptables"

    def __str__(self) -> str:
        return self.value


class FamilyState(str, Enum):
    """Per-family progress through one run."""

    IDLE = "idle"
    FETCHED = "fetched"
    SKIPPED = "skipped"
    STAGED = "staged"
    PLANNED = "planned"
    APPLIED = "applied"
    PARTIALLY_APPLIED = "partially_applied"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PrefixSet:
    """Prefixes of one address family for one country."""

    country_code: str
    family: Family
    prefixes: Tuple[str, ...]
    generated_at: _dt.datetime

    @classmethod
    def build(
        cls,
        country_code: str,
        family: Family,
        prefixes: Iterable[str],
        generated_at: _dt.datetime,
    ) -> "PrefixSet":
        """
        Create a set, dropping duplicate networks but keeping first-seen order.

        Prefixes are stored in canonical form; :class:`ValueError` is raised
        for anything that is not CIDR.
        """
        unique = tuple(
            dict.fromkeys(
                str(ipaddress.ip_network(p.strip(), strict=False)) for p in prefixes if p.strip()
            )
        )
        return cls(
            country_code=country_code.upper(),
            family=Family(family),
            prefixes=unique,
            generated_at=generated_at,
        )

    def __len__(self) -> int:
        return len(self.prefixes)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Last applied :class:`PrefixSet` plus the wall-clock time it was written."""

    prefix_set: PrefixSet
    written_at: _dt.datetime

    @property
    def generated_at(self) -> _dt.datetime:
        return self.prefix_set.generated_at


@dataclass(frozen=True, slots=True)
class Batch:
    index: int
    members: Tuple[str, ...]
    rule_name: str

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True, slots=True)
class ApplyPlan:
    """
    Ordered batches for one (country, family) pair.

    ``previous_batch_count`` is what the target held before this run; rule
    indices in ``[batch_count, previous_batch_count)`` must be removed.
    """

    naming: NamingContext
    batches: Tuple[Batch, ...]
    previous_batch_count: int = 0

    @property
    def batch_count(self) -> int:
        return len(self.batches)

    @property
    def prefixes(self) -> Tuple[str, ...]:
        return tuple(p for batch in self.batches for p in batch.members)

    @property
    def stale_indices(self) -> range:
        return range(self.batch_count, max(self.previous_batch_count, self.batch_count))

    @property
    def stale_rule_names(self) -> Tuple[str, ...]:
        return tuple(self.naming.rule_name(i) for i in self.stale_indices)


@dataclass(frozen=True, slots=True)
class SourceDocument:
    """Normalised prefix-source payload for one country."""

    country_code: str
    generated_at: _dt.datetime
    ipv4: Tuple[str, ...]
    ipv6: Tuple[str, ...]
    status: str = "ok"
    messages: Tuple[str, ...] = ()

    def prefix_set(self, family: Family) -> PrefixSet:
        prefixes = self.ipv6 if Family(family) is Family.IPV6 else self.ipv4
        return PrefixSet.build(self.country_code, family, prefixes, self.generated_at)


@dataclass(slots=True)
class FamilyReport:
    """Outcome of one address family in one run."""

    country_code: str
    family: Family
    state: FamilyState = FamilyState.IDLE
    prefix_count: int = 0
    batch_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state in (FamilyState.APPLIED, FamilyState.SKIPPED)
