"""
countryblock.fetchers.ripe
~~~~~~~~~~~~~~~~~~~~~~~~~~

Fetch a country's IP prefix allocations from the **RIPEstat**
``country-resource-list`` data call and normalise them into a
:class:`~countryblock.models.SourceDocument`.

Expected payload::

    {"status": "ok",
     "messages": [],
     "data": {"query_time": "2022-10-02T00:00:00",
              "resources": {"ipv4": ["1.2.3.0/24"], "ipv6": ["2001:db8::/32"]}}}

A flattened ``{"status", "generatedAt", "ipv4", "ipv6"}`` document is
accepted as well.

Public API
----------
fetch(country_code, ...) -> dict
    Download and decode the JSON body.
parse(payload, country_code) -> SourceDocument
    Validate status, timestamp and prefixes.
get(country_code, settings) -> SourceDocument
"""

from __future__ import annotations

import datetime as _dt
import logging
from typing import Any, Dict, Iterable, List

import requests

from countryblock.config import RIPE_COUNTRY_RESOURCE_URL, Settings
from countryblock.errors import SourceDataInvalid, SourceUnavailable
from countryblock.models import Family, SourceDocument
from countryblock.parsers.prefixes import split_by_family
from countryblock.utils.retry import retry

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "countryblock/1.0 (+https://stat.ripe.net/docs/data_api)",
    "Accept": "application/json",
}

_TRANSIENT = (requests.ConnectionError, requests.Timeout)


def _download(url: str, params: Dict[str, str], timeout: float) -> requests.Response:
    logger.debug("GET %s params=%s", url, params)
    return requests.get(url, params=params, headers=HEADERS, timeout=timeout)


def fetch(
    country_code: str,
    *,
    url: str = RIPE_COUNTRY_RESOURCE_URL,
    timeout: float = 30.0,
    attempts: int = 3,
    delay: float = 2.0,
) -> Dict[str, Any]:
    """
    Download the resource list for *country_code* and return the decoded JSON.

    Raises
    ------
    SourceUnavailable
        Connection failure, timeout (after *attempts* tries) or HTTP 5xx.
    SourceDataInvalid
        The body is not a JSON object.
    """
    cc = country_code.upper()
    params = {"v4_format": "prefix", "resource": cc}
    download = retry(attempts=attempts, delay=delay, exceptions=_TRANSIENT)(_download)
    try:
        resp = download(url, params, timeout)
    except requests.RequestException as exc:
        raise SourceUnavailable(
            f"failed downloading prefix list from {url}: {exc}",
            country_code=cc,
            operation="fetch",
        ) from exc

    if resp.status_code >= 500:
        raise SourceUnavailable(
            f"prefix source returned HTTP {resp.status_code}",
            country_code=cc,
            operation="fetch",
        )
    try:
        payload = resp.json()
    except ValueError as exc:
        raise SourceDataInvalid(
            f"prefix source returned a non-JSON body (HTTP {resp.status_code})",
            country_code=cc,
            operation="parse",
        ) from exc
    if not isinstance(payload, dict):
        raise SourceDataInvalid(
            "prefix source returned JSON that is not an object",
            country_code=cc,
            operation="parse",
        )
    return payload


def _parse_time(raw: Any, cc: str) -> _dt.datetime:
    if not isinstance(raw, str) or not raw.strip():
        raise SourceDataInvalid(
            f"missing generation timestamp: {raw!r}", country_code=cc, operation="parse"
        )
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        moment = _dt.datetime.fromisoformat(text)
    except ValueError as exc:
        raise SourceDataInvalid(
            f"unparseable generation timestamp: {raw!r}", country_code=cc, operation="parse"
        ) from exc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=_dt.timezone.utc)
    return moment.astimezone(_dt.timezone.utc)


def _messages(payload: Dict[str, Any]) -> List[str]:
    # RIPEstat sends [["error", "text"], ...]
    out: List[str] = []
    for msg in payload.get("messages") or []:
        if isinstance(msg, (list, tuple)):
            out.append(": ".join(str(part) for part in msg))
        else:
            out.append(str(msg))
    return out


def _prefix_list(value: Any, name: str, cc: str) -> Iterable[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise SourceDataInvalid(
            f"'{name}' is not a list of prefixes", country_code=cc, operation="parse"
        )
    return value


def parse(payload: Dict[str, Any], country_code: str) -> SourceDocument:
    """Validate a prefix-source payload and return a :class:`SourceDocument`."""
    cc = country_code.upper()
    status = str(payload.get("status", "")).strip()
    messages = _messages(payload)
    if status.lower() != "ok":
        raise SourceDataInvalid(
            f"prefix source status {status or '<missing>'!r}: {'; '.join(messages) or 'no message'}",
            country_code=cc,
            operation="parse",
        )

    data = payload.get("data")
    if isinstance(data, dict):
        resources = data.get("resources") or {}
        raw_time = data.get("query_time") or payload.get("generatedAt")
    else:
        resources = payload
        raw_time = payload.get("generatedAt")
    if not isinstance(resources, dict):
        raise SourceDataInvalid("'resources' is not an object", country_code=cc, operation="parse")

    generated_at = _parse_time(raw_time, cc)
    raw = [
        *_prefix_list(resources.get("ipv4"), "ipv4", cc),
        *_prefix_list(resources.get("ipv6"), "ipv6", cc),
    ]
    try:
        by_family = split_by_family(raw)
    except ValueError as exc:
        raise SourceDataInvalid(
            f"invalid prefix in source data: {exc}", country_code=cc, operation="parse"
        ) from exc

    doc = SourceDocument(
        country_code=cc,
        generated_at=generated_at,
        ipv4=tuple(by_family[Family.IPV4]),
        ipv6=tuple(by_family[Family.IPV6]),
        status=status,
        messages=tuple(messages),
    )
    logger.info(
        "Source for %s generated %s: %d ipv4, %d ipv6 prefixes",
        cc,
        generated_at.isoformat(),
        len(doc.ipv4),
        len(doc.ipv6),
    )
    return doc


def get(country_code: str, settings: Settings) -> SourceDocument:
    payload = fetch(
        country_code,
        url=settings.source_url,
        timeout=settings.http_timeout,
        attempts=settings.http_retries,
        delay=settings.http_retry_delay,
    )
    return parse(payload, country_code)
