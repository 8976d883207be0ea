"""
countryblock.errors
~~~~~~~~~~~~~~~~~~~

Exception hierarchy shared by every stage of a block-list run.

Each error may carry the *country_code*, *family* and *operation* it
happened in; ``str(exc)`` renders that context so a single log line is
enough to diagnose a failure without re-running in verbose mode.

Hierarchy
---------
CountryBlockError
    ConfigurationError
    SourceError
        SourceUnavailable   – transport failure reaching the prefix source
        SourceDataInvalid   – non-ok status or unparseable body
    SnapshotIOError         – temp-file / rename / stat failure
    TargetError
        TargetUnavailable   – firewall command missing or unauthorised
        TargetApplyError    – a single create / delete / insert call failed
"""

from __future__ import annotations


class CountryBlockError(Exception):
    """Base class for all countryblock failures."""

    def __init__(
        self,
        message: str,
        *,
        country_code: str | None = None,
        family: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.country_code = country_code
        self.family = family
        self.operation = operation

    def __str__(self) -> str:
        context = [
            f"{key}={value}"
            for key, value in (
                ("country", self.country_code),
                ("family", self.family),
                ("operation", self.operation),
            )
            if value
        ]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ConfigurationError(CountryBlockError):
    """Invalid command-line or environment configuration."""


class SourceError(CountryBlockError):
    """The prefix source could not deliver usable data."""


class SourceUnavailable(SourceError):
    pass


class SourceDataInvalid(SourceError):
    pass


class SnapshotIOError(CountryBlockError):
    pass


class TargetError(CountryBlockError):
    """A firewall target rejected or could not run a command."""


class TargetUnavailable(TargetError):
    pass


class TargetApplyError(TargetError):
    pass
