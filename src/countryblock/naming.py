"""
countryblock.naming
~~~~~~~~~~~~~~~~~~~

Pure functions that derive target object names from (country, family,
index).  Because a rule name can always be recomputed, successive runs find
and replace the same rules without keeping a rule-to-batch table.

* ipset sets:   ``country_block_<CC>_<family>``  (upper-case country)
* cloud rules:  ``block-country-<cc>-<family>-<index>``  (lower-case
  country, GCE only accepts ``[a-z0-9-]``)
"""

from __future__ import annotations

import re
from dataclasses import dataclass

SET_NAME_TEMPLATE = "country_block_{cc}_{family}"
RULE_PREFIX_TEMPLATE = "block-country-{cc}-{family}-"


def _family(family) -> str:
    # Family is a str enum; plain strings are accepted too
    return getattr(family, "value", family)


def set_name(country_code: str, family) -> str:
    return SET_NAME_TEMPLATE.format(cc=country_code.upper(), family=_family(family))


def rule_prefix(country_code: str, family) -> str:
    return RULE_PREFIX_TEMPLATE.format(cc=country_code.lower(), family=_family(family))


def rule_name(country_code: str, family, index: int) -> str:
    if index < 0:
        raise ValueError(f"batch index must be non-negative, got {index}")
    return f"{rule_prefix(country_code, family)}{index}"


def rule_index(country_code: str, family, name: str) -> int | None:
    """Return the batch index encoded in *name*, or ``None`` if it is not one of ours."""
    m = re.fullmatch(re.escape(rule_prefix(country_code, family)) + r"(\d+)", name.strip())
    return int(m.group(1)) if m else None


@dataclass(frozen=True, slots=True)
class NamingContext:
    country_code: str
    family: str

    @property
    def set_name(self) -> str:
        return set_name(self.country_code, self.family)

    @property
    def rule_prefix(self) -> str:
        return rule_prefix(self.country_code, self.family)

    def rule_name(self, index: int) -> str:
        return rule_name(self.country_code, self.family, index)

    def rule_index(self, name: str) -> int | None:
        return rule_index(self.country_code, self.family, name)
