"""
Unit-tests for the firewall appliers (ipset/iptables and gcloud).

The tests are **offline-only**: every external binary is replaced by the
in-memory :class:`~conftest.FakeFirewall`, so no privileged command runs.
"""

from __future__ import annotations

import copy

import pytest

from countryblock.defense.gcloud import GcloudApplier
from countryblock.defense.ipset import IpsetApplier, IptablesClient
from countryblock.defense.shell import CommandResult, require_commands, run_command
from countryblock.errors import TargetApplyError, TargetUnavailable
from countryblock.models import Family
from countryblock.naming import NamingContext
from countryblock.planner import plan

V4 = ["1.2.3.0/24", "5.6.7.0/24"]
V6 = ["2001:db8::/32"]
DROP_SPEC = "-m set --match-set country_block_US_ipv4 src -j DROP"


def _local_plan(prefixes, family=Family.IPV4):
    return plan(prefixes, max(len(prefixes), 1), NamingContext("US", family.value))


# --------------------------------------------------------------------------- #
#  ipset / iptables applier
# --------------------------------------------------------------------------- #
def test_ipset_creates_set_inserts_and_adds_drop_rule(firewall):
    applier = IpsetApplier(firewall)

    result = applier.reconcile("US", Family.IPV4, _local_plan(V4))

    assert result.complete
    created = firewall.sets["country_block_US_ipv4"]
    assert created["type"] == "hash:net"
    assert created["family"] == "inet"
    assert created["members"] == V4
    assert firewall.rules["iptables"] == [DROP_SPEC]
    assert firewall.rules["ip6tables"] == []
    # bulk insert: one restore call for all prefixes
    assert [c[1] for c in firewall.calls_to("ipset")].count("restore") == 1


def test_ipset_v6_uses_inet6_and_ip6tables(firewall):
    IpsetApplier(firewall).reconcile("US", Family.IPV6, _local_plan(V6, Family.IPV6))

    assert firewall.sets["country_block_US_ipv6"]["family"] == "inet6"
    assert firewall.rules["ip6tables"] == ["-m set --match-set country_block_US_ipv6 src -j DROP"]
    assert firewall.rules["iptables"] == []


def test_ipset_second_run_flushes_and_keeps_single_rule(firewall):
    applier = IpsetApplier(firewall)
    applier.reconcile("US", Family.IPV4, _local_plan(V4))
    result = applier.reconcile("US", Family.IPV4, _local_plan(["9.9.9.0/24"]))

    assert result.created == []
    assert firewall.sets["country_block_US_ipv4"]["members"] == ["9.9.9.0/24"]
    assert firewall.rules["iptables"] == [DROP_SPEC]
    assert [c[1] for c in firewall.calls_to("ipset")].count("create") == 1
    assert [c[1] for c in firewall.calls_to("ipset")].count("flush") == 1


def test_ipset_same_plan_twice_is_idempotent(firewall):
    applier = IpsetApplier(firewall)
    applier.reconcile("US", Family.IPV4, _local_plan(V4))
    once = copy.deepcopy((firewall.sets, firewall.rules))
    applier.reconcile("US", Family.IPV4, _local_plan(V4))

    assert (firewall.sets, firewall.rules) == once


def test_duplicate_drop_rules_are_collapsed(firewall):
    firewall.rules["iptables"] = [DROP_SPEC, "-p tcp --dport 22 -j ACCEPT", DROP_SPEC]
    IpsetApplier(firewall).reconcile("US", Family.IPV4, _local_plan(V4))
    assert firewall.rules["iptables"].count(DROP_SPEC) == 1
    assert "-p tcp --dport 22 -j ACCEPT" in firewall.rules["iptables"]


def test_drop_rule_failure_is_fatal(firewall):
    firewall.fail_when("iptables", "-I")

    with pytest.raises(TargetApplyError) as info:
        IpsetApplier(firewall).reconcile("US", Family.IPV4, _local_plan(V4))
    assert info.value.operation == "insert_drop_rule"
    assert info.value.country_code == "US"
    assert info.value.family == "ipv4"


def test_insert_failure_is_reported_not_raised(firewall):
    firewall.fail_when("ipset", "restore")

    result = IpsetApplier(firewall).reconcile("US", Family.IPV4, _local_plan(V4))

    assert not result.complete
    assert "country_block_US_ipv4" in result.errors[0]
    # the drop rule is still ensured
    assert firewall.rules["iptables"] == [DROP_SPEC]


def test_create_failure_raises(firewall):
    firewall.fail_when("ipset", "create")
    with pytest.raises(TargetApplyError) as info:
        IpsetApplier(firewall).reconcile("US", Family.IPV4, _local_plan(V4))
    assert info.value.operation == "ipset_create"


def test_empty_plan_still_prepares_set_and_rule(firewall):
    result = IpsetApplier(firewall).reconcile("US", Family.IPV4, _local_plan([]))
    assert result.complete
    assert firewall.sets["country_block_US_ipv4"]["members"] == []
    assert "restore" not in [c[1] for c in firewall.calls_to("ipset")]


def test_iptables_client_counts_only_matching_rules(firewall):
    firewall.rules["iptables"] = [DROP_SPEC, "-m set --match-set country_block_CH_ipv4 src -j DROP"]
    client = IptablesClient(Family.IPV4, firewall)
    assert client.count_drop_rules("country_block_US_ipv4") == 1
    assert client.ensure_single_drop_rule("country_block_US_ipv4") is False


# --------------------------------------------------------------------------- #
#  gcloud applier
# --------------------------------------------------------------------------- #
def _cloud_plan(applier, prefixes, family=Family.IPV4):
    previous = applier.current_batch_count("US", family)
    return plan(prefixes, applier.batch_size(len(prefixes)), NamingContext("US", family.value), previous)


def test_gcloud_creates_one_rule_per_batch(firewall):
    applier = GcloudApplier(firewall, max_batch_size=2)
    prefixes = [f"10.0.{i}.0/24" for i in range(5)]

    result = applier.reconcile("US", Family.IPV4, _cloud_plan(applier, prefixes))

    assert result.created == [f"block-country-us-ipv4-{i}" for i in range(3)]
    assert firewall.cloud["block-country-us-ipv4-2"]["source-ranges"] == ["10.0.4.0/24"]
    rule = firewall.cloud["block-country-us-ipv4-0"]
    assert rule["action"] == "DENY"
    assert rule["direction"] == "INGRESS"
    assert rule["rules"] == "all"
    assert rule["priority"] == "1"
    assert rule["description"] == "Block incoming traffic on all ports from US"


def test_gcloud_shrink_deletes_higher_indices(firewall):
    applier = GcloudApplier(firewall, max_batch_size=2)
    applier.reconcile("US", Family.IPV4, _cloud_plan(applier, [f"10.0.{i}.0/24" for i in range(6)]))
    assert len(firewall.cloud) == 3

    new_plan = _cloud_plan(applier, ["1.2.3.0/24"])
    assert new_plan.previous_batch_count == 3
    result = applier.reconcile("US", Family.IPV4, new_plan)

    assert {"block-country-us-ipv4-1", "block-country-us-ipv4-2"} <= set(result.deleted)
    assert sorted(firewall.cloud) == ["block-country-us-ipv4-0"]
    assert firewall.cloud["block-country-us-ipv4-0"]["source-ranges"] == ["1.2.3.0/24"]
    # all old rules went in a single delete call
    deletes = [c for c in firewall.calls_to("gcloud") if c[3] == "delete"]
    assert len(deletes) == 1


def test_gcloud_same_plan_twice_is_idempotent(firewall):
    applier = GcloudApplier(firewall)
    applier.reconcile("US", Family.IPV4, _cloud_plan(applier, V4))
    once = copy.deepcopy(firewall.cloud)
    applier.reconcile("US", Family.IPV4, _cloud_plan(applier, V4))
    assert firewall.cloud == once


def test_gcloud_leaves_other_families_and_foreign_rules(firewall):
    firewall.cloud["block-country-us-ipv6-0"] = {"source-ranges": V6}
    firewall.cloud["allow-ssh"] = {"source-ranges": ["0.0.0.0/0"]}
    applier = GcloudApplier(firewall)

    applier.reconcile("US", Family.IPV4, _cloud_plan(applier, V4))

    assert "block-country-us-ipv6-0" in firewall.cloud
    assert "allow-ssh" in firewall.cloud


def test_gcloud_deletes_matching_rules_without_numeric_suffix(firewall):
    firewall.cloud["block-country-us-ipv4-legacy"] = {"source-ranges": ["9.9.9.0/24"]}
    applier = GcloudApplier(firewall)

    assert applier.current_batch_count("US", Family.IPV4) == 0
    result = applier.reconcile("US", Family.IPV4, _cloud_plan(applier, V4))

    assert "block-country-us-ipv4-legacy" in result.deleted
    assert sorted(firewall.cloud) == ["block-country-us-ipv4-0"]


def test_gcloud_partial_failure_raises_with_context(firewall):
    applier = GcloudApplier(firewall, max_batch_size=1)
    firewall.fail_when("create", "block-country-us-ipv4-1")

    with pytest.raises(TargetApplyError) as info:
        applier.reconcile("US", Family.IPV4, _cloud_plan(applier, V4))

    assert info.value.operation == "create_rule"
    assert "block-country-us-ipv4-1" in str(info.value)
    assert sorted(firewall.cloud) == ["block-country-us-ipv4-0"]


def test_gcloud_list_failure_is_unavailable(firewall):
    firewall.fail_when("gcloud", "list")
    with pytest.raises(TargetUnavailable):
        GcloudApplier(firewall).current_batch_count("US", Family.IPV4)


def test_gcloud_project_and_network_flags(firewall):
    applier = GcloudApplier(firewall, project="acme-prod", network="edge")
    applier.reconcile("US", Family.IPV4, _cloud_plan(applier, V4))

    create = next(c for c in firewall.calls_to("gcloud") if c[3] == "create")
    assert "--network=edge" in create
    assert create[-1] == "--project=acme-prod"


def test_gcloud_rejects_oversized_batches(firewall):
    applier = GcloudApplier(firewall, max_batch_size=1)
    with pytest.raises(ValueError):
        applier.reconcile("US", Family.IPV4, plan(V4, 2, NamingContext("US", "ipv4")))


# --------------------------------------------------------------------------- #
#  shell helpers
# --------------------------------------------------------------------------- #
def test_require_commands_reports_missing(monkeypatch):
    import countryblock.defense.shell as shell

    monkeypatch.setattr(shell.shutil, "which", lambda name: None if name == "ipset" else f"/usr/sbin/{name}")
    with pytest.raises(TargetUnavailable) as info:
        require_commands(["iptables", "ipset"])
    assert "ipset" in str(info.value)
    assert info.value.message.startswith("ipset not installed")


def test_run_command_missing_binary_is_unavailable():
    with pytest.raises(TargetUnavailable):
        run_command(["countryblock-no-such-binary", "--version"])


def test_command_result_describe():
    res = CommandResult(("ipset", "flush", "x"), 1, "", "set does not exist\n")
    assert not res.ok
    assert res.describe() == "`ipset flush x` exited 1: set does not exist"
