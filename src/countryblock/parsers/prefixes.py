"""
countryblock.parsers.prefixes
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

CIDR helpers for the prefix source adapter.

The address family of a prefix is decided here and nowhere else: a prefix
is IPv6 if and only if :pymod:`ipaddress` parses it as an IPv6 network.
Prefixes are compared in canonical form, so ``2001:DB8::/32`` and
``2001:db8::/32`` (or ``1.2.3.4/24`` and ``1.2.3.0/24``) are one network.

Public API
----------
canonical(prefix) -> str
family_of(prefix) -> Family
split_by_family(prefixes) -> dict[Family, list[str]]
    Classify and de-duplicate, keeping first-seen order per family.
"""

from __future__ import annotations

import ipaddress
from typing import Dict, Iterable, List

from countryblock.models import Family


def canonical(prefix: str) -> str:
    """Return *prefix* as its network address in compressed lower-case form."""
    return str(ipaddress.ip_network(prefix.strip(), strict=False))


def family_of(prefix: str) -> Family:
    """Return the :class:`Family` of *prefix*; raise :class:`ValueError` if it is not CIDR."""
    network = ipaddress.ip_network(prefix.strip(), strict=False)
    return Family.IPV6 if network.version == 6 else Family.IPV4


def split_by_family(prefixes: Iterable[str]) -> Dict[Family, List[str]]:
    results: Dict[Family, List[str]] = {Family.IPV4: [], Family.IPV6: []}
    seen = set()
    for raw in prefixes:
        text = str(raw).strip()
        if not text:
            continue
        prefix = canonical(text)
        if prefix in seen:
            continue
        seen.add(prefix)
        results[family_of(prefix)].append(prefix)
    return results
