"""
countryblock.defense.gcloud
~~~~~~~~~~~~~~~~~~~~~~~~~~~

Google Cloud VPC firewall target, driven through the ``gcloud`` CLI.

A rule accepts at most 5000 source ranges, so a country's prefixes are
spread over ``block-country-<cc>-<family>-<index>`` rules built from the
:class:`~countryblock.models.ApplyPlan`.  Reconciling is a full replace:
every existing rule matching ``block-country-<cc>-<family>-*`` is deleted
in one call, whatever its suffix, then one rule per batch is created in
order.  A failure part way through leaves the family partially applied;
it is reported, not rolled back.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from countryblock.defense.base import ApplyResult, Applier
from countryblock.defense.shell import CommandResult, Runner, run_command
from countryblock.errors import TargetApplyError, TargetUnavailable
from countryblock.models import ApplyPlan, Batch, Family
from countryblock.naming import NamingContext
from countryblock.planner import DEFAULT_MAX_BATCH_SIZE

logger = logging.getLogger(__name__)

GCLOUD_BIN = "gcloud"


class GcloudClient:
    """``gcloud compute firewall-rules`` list / delete / create."""

    def __init__(
        self,
        runner: Runner = run_command,
        *,
        project: Optional[str] = None,
        binary: str = GCLOUD_BIN,
    ) -> None:
        self.runner = runner
        self.project = project
        self.binary = binary

    def _run(self, args: Sequence[str]) -> CommandResult:
        cmd = [self.binary, "compute", "firewall-rules", *args]
        if self.project:
            cmd.append(f"--project={self.project}")
        return self.runner(cmd)

    def list_names(self, name_prefix: str) -> List[str]:
        result = self._run(
            ["list", f"--filter=name ~ ^{name_prefix}", "--format=value(name)"]
        )
        if not result.ok:
            raise TargetUnavailable(
                f"listing firewall rules failed: {result.describe()}",
                operation="list_rules",
            )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def delete(self, names: Sequence[str]) -> CommandResult:
        return self._run(["delete", *names, "--quiet"])

    def create(
        self,
        name: str,
        source_ranges: Sequence[str],
        *,
        priority: int,
        description: str,
        network: Optional[str] = None,
    ) -> CommandResult:
        args = [
            "create",
            name,
            f"--description={description}",
            "--action=DENY",
            "--rules=all",
            "--direction=INGRESS",
            f"--priority={priority}",
            f"--source-ranges={','.join(source_ranges)}",
        ]
        if network:
            args.append(f"--network={network}")
        return self._run(args)


class GcloudApplier(Applier):
    """Replace a (country, family)'s cloud firewall rules with the plan's batches."""

    name = "gcloud"
    required_commands = (GCLOUD_BIN,)

    def __init__(
        self,
        runner: Runner = run_command,
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        priority: int = 1,
        network: Optional[str] = None,
        project: Optional[str] = None,
    ) -> None:
        super().__init__(runner)
        self.client = GcloudClient(runner, project=project)
        self.max_batch_size = max_batch_size
        self.priority = priority
        self.network = network

    def batch_size(self, prefix_count: int) -> int:
        return self.max_batch_size

    def _existing(self, naming: NamingContext) -> List[str]:
        return [n for n in self.client.list_names(naming.rule_prefix) if n.startswith(naming.rule_prefix)]

    def current_batch_count(self, country_code: str, family: Family) -> int:
        naming = NamingContext(country_code, Family(family).value)
        # only <prefix><index> names count; other matches are still deleted on reconcile
        indices = [i for i in map(naming.rule_index, self._existing(naming)) if i is not None]
        return max(indices) + 1 if indices else 0

    def _create(self, country_code: str, family: Family, batch: Batch) -> None:
        result = self.client.create(
            batch.rule_name,
            batch.members,
            priority=self.priority,
            description=f"Block incoming traffic on all ports from {country_code.upper()}",
            network=self.network,
        )
        if not result.ok:
            raise TargetApplyError(
                f"creating rule {batch.rule_name} ({len(batch)} ranges) failed: {result.describe()}",
                country_code=country_code,
                family=family.value,
                operation="create_rule",
            )
        logger.info("Created %s with %d source ranges", batch.rule_name, len(batch))

    def reconcile(self, country_code: str, family: Family, plan: ApplyPlan) -> ApplyResult:
        family = Family(family)
        oversized = [b.rule_name for b in plan.batches if len(b) > self.max_batch_size]
        if oversized:
            raise ValueError(f"batches exceed {self.max_batch_size} entries: {oversized}")

        outcome = ApplyResult()
        try:
            existing = self._existing(plan.naming)
        except TargetUnavailable as exc:
            exc.country_code, exc.family = country_code, family.value
            raise

        missing = set(plan.stale_rule_names) - set(existing)
        if missing:
            logger.debug("Stale rules already absent: %s", ", ".join(sorted(missing)))

        if existing:
            result = self.client.delete(existing)
            if not result.ok:
                raise TargetApplyError(
                    f"deleting {len(existing)} rule(s) failed: {result.describe()}",
                    country_code=country_code,
                    family=family.value,
                    operation="delete_rules",
                )
            outcome.deleted.extend(existing)
            logger.info("Deleted %d existing rule(s) for %s", len(existing), plan.naming.rule_prefix)

        for batch in plan.batches:
            self._create(country_code, family, batch)
            outcome.created.append(batch.rule_name)
        return outcome
