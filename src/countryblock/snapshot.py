"""
countryblock.snapshot
~~~~~~~~~~~~~~~~~~~~~

On-disk record of the last applied prefix list per (country, family).

Layout
------
One plain-text file per pair at ``<base_dir>/<family>-<CC>`` holding one
prefix per line.  The file's **mtime is the generation marker**: it is set
to the source's ``generated_at`` rather than to the wall-clock write time,
so no separate timestamp is stored.

Writes are atomic: the content is staged in a uniquely named temporary file
in the same directory, flushed and fsynced, stamped, then moved into place
with a single :pyfunc:`os.replace`.  A crash leaves either the old or the
new snapshot, never a truncated one, and different pairs never share a
temporary name.
"""

from __future__ import annotations

import datetime as _dt
import logging
import os
import tempfile
from pathlib import Path

from countryblock.errors import SnapshotIOError
from countryblock.models import Family, PrefixSet, Snapshot

logger = logging.getLogger(__name__)

_NS_PER_US = 1_000


def _to_ns(moment: _dt.datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=_dt.timezone.utc)
    delta = moment - _dt.datetime(1970, 1, 1, tzinfo=_dt.timezone.utc)
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    return micros * _NS_PER_US


def _from_ns(ns: int) -> _dt.datetime:
    epoch = _dt.datetime(1970, 1, 1, tzinfo=_dt.timezone.utc)
    return epoch + _dt.timedelta(microseconds=ns // _NS_PER_US)


class SnapshotStore:
    """File-backed snapshot store rooted at *base_dir*."""

    def __init__(self, base_dir: str | os.PathLike) -> None:
        self.base_dir = Path(base_dir)

    def path(self, country_code: str, family: Family) -> Path:
        return self.base_dir / f"{Family(family).value}-{country_code.upper()}"

    def read(self, country_code: str, family: Family) -> Snapshot | None:
        """Return the stored snapshot, or ``None`` when there is none yet."""
        family = Family(family)
        path = self.path(country_code, family)
        try:
            st = path.stat()
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No snapshot at %s", path)
            return None
        except OSError as exc:
            raise SnapshotIOError(
                f"cannot read snapshot {path}: {exc}",
                country_code=country_code,
                family=family.value,
                operation="read",
            ) from exc

        try:
            prefix_set = PrefixSet.build(
                country_code, family, text.splitlines(), _from_ns(st.st_mtime_ns)
            )
        except ValueError as exc:
            raise SnapshotIOError(
                f"corrupt snapshot {path}: {exc}",
                country_code=country_code,
                family=family.value,
                operation="read",
            ) from exc
        return Snapshot(
            prefix_set=prefix_set,
            written_at=_dt.datetime.fromtimestamp(st.st_ctime, _dt.timezone.utc),
        )

    def write(self, prefix_set: PrefixSet) -> Path:
        """Atomically replace the snapshot for *prefix_set*'s country and family."""
        family = prefix_set.family.value
        target = self.path(prefix_set.country_code, prefix_set.family)
        tmp_name: str | None = None
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.base_dir, prefix=f".{target.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                for prefix in prefix_set.prefixes:
                    fh.write(f"{prefix}\n")
                fh.flush()
                os.fsync(fh.fileno())
            ns = _to_ns(prefix_set.generated_at)
            os.utime(tmp_name, ns=(ns, ns))
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise SnapshotIOError(
                f"cannot write snapshot {target}: {exc}",
                country_code=prefix_set.country_code,
                family=family,
                operation="write",
            ) from exc

        logger.info(
            "%s total entries %d (generated %s)",
            target,
            len(prefix_set),
            prefix_set.generated_at.isoformat(),
        )
        return target

    def invalidate(self, country_code: str, family: Family) -> None:
        """Mark the snapshot stale so the next run re-applies it."""
        path = self.path(country_code, family)
        try:
            os.utime(path, ns=(0, 0))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise SnapshotIOError(
                f"cannot invalidate snapshot {path}: {exc}",
                country_code=country_code,
                family=Family(family).value,
                operation="invalidate",
            ) from exc
        logger.debug("Invalidated snapshot %s", path)
