"""
Shared fixtures for the countryblock test-suite.

Nothing here touches the network or the host firewall: ``ipset``,
``iptables``/``ip6tables`` and ``gcloud`` are replaced by
:class:`FakeFirewall`, an in-memory runner that understands exactly the
command lines the appliers emit.
"""

from __future__ import annotations

import datetime as _dt
from typing import Callable, Dict, List, Optional

import pytest

from countryblock.defense.shell import CommandResult
from countryblock.snapshot import SnapshotStore

UTC = _dt.timezone.utc


def utc(*args: int) -> _dt.datetime:
    return _dt.datetime(*args, tzinfo=UTC)


# --------------------------------------------------------------------------- #
#  Fake firewall runner
# --------------------------------------------------------------------------- #
class FakeFirewall:
    """Stateful stand-in for the ipset / iptables / gcloud binaries."""

    def __init__(self) -> None:
        self.sets: Dict[str, dict] = {}
        self.rules: Dict[str, List[str]] = {"iptables": [], "ip6tables": []}
        self.cloud: Dict[str, dict] = {}
        self.calls: List[List[str]] = []
        self._failures: List[Callable[[List[str]], bool]] = []

    # -- helpers ---------------------------------------------------------- #
    def fail_when(self, *tokens: str) -> None:
        """Make every command containing all *tokens* exit 1."""
        self._failures.append(lambda args: all(t in args for t in tokens))

    def calls_to(self, binary: str) -> List[List[str]]:
        return [c for c in self.calls if c[0] == binary]

    @staticmethod
    def _res(args, code: int = 0, out: str = "", err: str = "") -> CommandResult:
        return CommandResult(tuple(args), code, out, err)

    def __call__(self, args, input_: Optional[str] = None) -> CommandResult:
        args = [str(a) for a in args]
        self.calls.append(args)
        if any(check(args) for check in self._failures):
            return self._res(args, 1, err="simulated failure")
        binary = args[0]
        if binary == "ipset":
            return self._ipset(args, input_)
        if binary in self.rules:
            return self._iptables(args)
        if binary == "gcloud":
            return self._gcloud(args)
        return self._res(args, 127, err=f"{binary}: command not found")

    # -- ipset ------------------------------------------------------------ #
    def _ipset(self, args, input_):
        cmd = args[1]
        if cmd == "list":
            name = args[-1]
            if name in self.sets:
                return self._res(args, out=f"{name}\n")
            return self._res(args, 1, err="The set with the given name does not exist")
        if cmd == "create":
            name = args[2]
            if name in self.sets:
                return self._res(args, 1, err="set with the same name already exists")
            family = args[args.index("family") + 1] if "family" in args else "inet"
            self.sets[name] = {"type": args[3], "family": family, "members": []}
            return self._res(args)
        if cmd == "flush":
            if args[2] not in self.sets:
                return self._res(args, 1, err="set does not exist")
            self.sets[args[2]]["members"].clear()
            return self._res(args)
        if cmd == "restore":
            for line in (input_ or "").splitlines():
                _, name, member = line.split()
                if name not in self.sets:
                    return self._res(args, 1, err=f"set {name} does not exist")
                if member not in self.sets[name]["members"]:
                    self.sets[name]["members"].append(member)
            return self._res(args)
        return self._res(args, 1, err=f"unknown ipset command {cmd}")

    # -- iptables --------------------------------------------------------- #
    def _iptables(self, args):
        table = self.rules[args[0]]
        op = args[1]
        if op == "-S":
            lines = [f"-P {args[2]} ACCEPT"] + [f"-A {args[2]} {r}" for r in table]
            return self._res(args, out="\n".join(lines) + "\n")
        if op == "-I":
            table.insert(0, " ".join(args[4:]))
            return self._res(args)
        if op == "-D":
            spec = " ".join(args[3:])
            if spec not in table:
                return self._res(args, 1, err="Bad rule (does a matching rule exist in that chain?).")
            table.remove(spec)
            return self._res(args)
        return self._res(args, 2, err=f"unknown option {op}")

    # -- gcloud ----------------------------------------------------------- #
    def _gcloud(self, args):
        rest = [a for a in args[3:] if not a.startswith("--project=")]
        action = rest[0]
        if action == "list":
            flt = next(a for a in rest if a.startswith("--filter="))
            prefix = flt.split("^", 1)[1]
            names = sorted(n for n in self.cloud if n.startswith(prefix))
            return self._res(args, out="".join(f"{n}\n" for n in names))
        if action == "delete":
            names = [a for a in rest[1:] if not a.startswith("--")]
            if any(n not in self.cloud for n in names):
                return self._res(args, 1, err="resource not found")
            for n in names:
                del self.cloud[n]
            return self._res(args)
        if action == "create":
            name = rest[1]
            if name in self.cloud:
                return self._res(args, 1, err="already exists")
            flags = dict(a[2:].split("=", 1) for a in rest[2:] if a.startswith("--"))
            flags["source-ranges"] = flags["source-ranges"].split(",")
            self.cloud[name] = flags
            return self._res(args)
        return self._res(args, 1, err=f"unknown gcloud action {action}")


# --------------------------------------------------------------------------- #
#  Fixtures
# --------------------------------------------------------------------------- #
@pytest.fixture
def firewall() -> FakeFirewall:
    return FakeFirewall()


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "snapshots")


@pytest.fixture
def ripe_payload() -> dict:
    """Trimmed RIPEstat country-resource-list response."""
    return {
        "messages": [],
        "see_also": [],
        "version": "0.4",
        "data_call_status": "supported",
        "cached": False,
        "data": {
            "resources": {
                "asn": ["3303", "6730"],
                "ipv4": ["1.2.3.0/24", "5.6.7.0/24", "1.2.3.0/24"],
                "ipv6": ["2001:db8::/32", "2a00:1450::/29"],
            },
            "query_time": "2022-10-02T00:00:00",
        },
        "query_id": "20221002000000-0000",
        "process_time": 42,
        "server_id": "app000",
        "build_version": "live.2022.9.30.1",
        "status": "ok",
        "status_code": 200,
        "time": "2022-10-02T00:00:01.000000",
    }


@pytest.fixture
def flat_payload() -> dict:
    return {
        "status": "ok",
        "generatedAt": "2022-01-01T00:00:00Z",
        "ipv4": ["1.2.3.0/24", "5.6.7.0/24"],
    }
