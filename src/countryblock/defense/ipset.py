"""
countryblock.defense.ipset
~~~~~~~~~~~~~~~~~~~~~~~~~~

Local packet-filter target: one *ipset* ``hash:net`` set per (country,
family) plus exactly one iptables/ip6tables ``DROP`` rule matching it.

Design
------
* The set is named ``country_block_<CC>_<family>``.  An existing set is
  **flushed in place**, never destroyed, so the rule referencing it by name
  stays valid while it is refilled.
* All prefixes are added in a single ``ipset restore -!`` transaction.
  ipset sets have no per-rule entry limit relevant here, so the plan is
  applied unbatched.
* The drop rule is counted in ``iptables -S INPUT`` before anything is
  inserted; repeated runs never stack duplicate rules and stray duplicates
  are removed.

Classes
-------
IpsetClient      exists / create / flush / add_all
IptablesClient   count / insert / delete of the set's drop rule
IpsetApplier     :class:`~countryblock.defense.base.Applier` built on both
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from countryblock.defense.base import ApplyResult, Applier
from countryblock.defense.shell import CommandResult, Runner, run_command
from countryblock.errors import TargetApplyError
from countryblock.models import ApplyPlan, Family
from countryblock.naming import set_name

logger = logging.getLogger(__name__)

IPSET_BIN = "ipset"
CHAIN = "INPUT"


class IpsetClient:
    """Typed wrapper around the *ipset* binary."""

    def __init__(self, runner: Runner = run_command, binary: str = IPSET_BIN) -> None:
        self.runner = runner
        self.binary = binary

    def _run(self, args: Sequence[str], input_: str | None = None) -> CommandResult:
        return self.runner([self.binary, *args], input_=input_)

    def exists(self, name: str) -> bool:
        return self._run(["list", "-name", name]).ok

    def create(
        self,
        name: str,
        family: Family,
        *,
        hashsize: int = 4096,
        maxelem: int = 262144,
    ) -> CommandResult:
        args = ["create", name, "hash:net"]
        if Family(family) is Family.IPV6:
            args += ["family", Family.IPV6.ipset_family]
        args += ["hashsize", str(hashsize), "maxelem", str(maxelem)]
        return self._run(args)

    def flush(self, name: str) -> CommandResult:
        return self._run(["flush", name])

    def add_all(self, name: str, prefixes: Iterable[str]) -> CommandResult | None:
        """Add every prefix in one ``restore -!`` call; ``None`` when there is nothing to add."""
        lines = [f"add {name} {p.strip()}" for p in prefixes if p.strip()]
        if not lines:
            return None
        return self._run(["restore", "-!"], input_="\n".join(lines) + "\n")


class IptablesClient:
    """Manage the single ``-m set --match-set <set> src -j DROP`` rule of a chain."""

    def __init__(self, family: Family, runner: Runner = run_command, chain: str = CHAIN) -> None:
        self.family = Family(family)
        self.runner = runner
        self.chain = chain

    @property
    def binary(self) -> str:
        return self.family.iptables_bin

    @staticmethod
    def _rule_spec(set_name: str) -> List[str]:
        return ["-m", "set", "--match-set", set_name, "src", "-j", "DROP"]

    def count_drop_rules(self, set_name: str) -> int:
        result = self.runner([self.binary, "-S", self.chain])
        if not result.ok:
            raise TargetApplyError(
                f"cannot list {self.chain} rules: {result.describe()}",
                family=self.family.value,
                operation="list_rules",
            )
        wanted = " ".join(self._rule_spec(set_name))
        return sum(
            1
            for line in result.stdout.splitlines()
            if line.startswith(f"-A {self.chain} ") and line.rstrip().endswith(wanted)
        )

    def insert_drop_rule(self, set_name: str) -> CommandResult:
        return self.runner([self.binary, "-I", self.chain, "1", *self._rule_spec(set_name)])

    def delete_drop_rule(self, set_name: str) -> CommandResult:
        return self.runner([self.binary, "-D", self.chain, *self._rule_spec(set_name)])

    def ensure_single_drop_rule(self, set_name: str) -> bool:
        """Leave exactly one drop rule for *set_name*; return *True* if one was inserted."""
        count = self.count_drop_rules(set_name)
        if count == 0:
            result = self.insert_drop_rule(set_name)
            if not result.ok:
                raise TargetApplyError(
                    f"{set_name} not added to {self.binary}: {result.describe()}",
                    family=self.family.value,
                    operation="insert_drop_rule",
                )
            return True
        for _ in range(count - 1):
            result = self.delete_drop_rule(set_name)
            if not result.ok:
                logger.warning("Could not remove duplicate rule for %s: %s", set_name, result.describe())
                break
        return False


class IpsetApplier(Applier):
    """Apply a plan to a local ipset set and its iptables drop rule."""

    name = "ipset"
    required_commands = ("ipset", "iptables", "ip6tables")

    def __init__(
        self,
        runner: Runner = run_command,
        *,
        hashsize: int = 4096,
        maxelem: int = 262144,
    ) -> None:
        super().__init__(runner)
        self.ipset = IpsetClient(runner)
        self.hashsize = hashsize
        self.maxelem = maxelem

    def batch_size(self, prefix_count: int) -> int:
        return max(prefix_count, 1)

    def _prepare_set(self, name: str, country_code: str, family: Family) -> str:
        if self.ipset.exists(name):
            result, action = self.ipset.flush(name), "flush"
        else:
            result = self.ipset.create(name, family, hashsize=self.hashsize, maxelem=self.maxelem)
            action = "create"
        if not result.ok:
            raise TargetApplyError(
                f"ipset {action} {name} failed: {result.describe()}",
                country_code=country_code,
                family=family.value,
                operation=f"ipset_{action}",
            )
        logger.debug("ipset %s %s", action, name)
        return action

    def reconcile(self, country_code: str, family: Family, plan: ApplyPlan) -> ApplyResult:
        family = Family(family)
        name = set_name(country_code, family)
        outcome = ApplyResult()

        if self._prepare_set(name, country_code, family) == "create":
            outcome.created.append(name)

        prefixes = plan.prefixes
        added = self.ipset.add_all(name, prefixes)
        if added is not None and not added.ok:
            msg = f"adding {len(prefixes)} prefixes to {name} failed: {added.describe()}"
            logger.error("%s (country=%s, family=%s)", msg, country_code, family.value)
            outcome.errors.append(msg)
        else:
            logger.info("%s loaded with %d prefixes", name, len(prefixes))

        try:
            inserted = IptablesClient(family, self.runner).ensure_single_drop_rule(name)
        except TargetApplyError as exc:
            exc.country_code = exc.country_code or country_code
            raise
        if inserted:
            outcome.created.append(f"{family.iptables_bin}:{CHAIN}:{name}")
            logger.info("%s added to %s, job finished!", name, family.iptables_bin)
        else:
            logger.info("%s already added before to %s, job finished!", name, family.iptables_bin)
        return outcome
