"""
URL liveness prober for foreign ministry homepages.

Normalizes raw domains, follows redirects by hand (bounded), and records a
final URL plus a status string: the numeric HTTP code or a categorical
failure tag (DNS_ERROR, CONNECTION_REFUSED, TIMEOUT, ERROR_<code>).
Failures never propagate past probe_url(); they become status strings.

Also hosts the robots.txt checker and the blocked-URL retry pass, which
share the same request/classification code.
"""

import argparse
import errno
import logging
import socket
import ssl
import sys
import time
from typing import Dict, Iterator, List, Optional, Sequence
from urllib.parse import urlparse

import requests

from ..config.settings import (
    ConfigurationError,
    ProbeConfig,
    load_yaml_config,
    probe_config_from_yaml,
)
from ..logging_config import configure_logging
from ..models import ProbeResult
from .countries_csv import (
    COUNTRY_COLUMN,
    CountryTable,
    LEGACY_DOMAIN_COLUMN,
    LEGACY_URL_WORKING_COLUMN,
    ROBOTS_COLUMN,
    STATUS_COLUMN,
    URL_COLUMN,
)

logger = logging.getLogger(__name__)

REDIRECT_CODES = {301, 302, 307, 308}

# Timeout used by the blocked-URL retry pass (seconds)
RETRY_TIMEOUT_SECONDS = 30.0

# Statuses the retry pass re-probes
RETRYABLE_STATUSES = {"403", "TIMEOUT"}

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
}

# Full browser header set for sites that reject bare clients
BROWSER_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate, br',
    'DNT': '1',
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1',
    'Sec-Fetch-Dest': 'document',
    'Sec-Fetch-Mode': 'navigate',
    'Sec-Fetch-Site': 'none',
    'Sec-Fetch-User': '?1',
    'Cache-Control': 'max-age=0',
}

ROBOTS_HEADERS = {
    'User-Agent': 'mofa-stances-bot/1.0 robots.txt checker',
}


def normalize_url(domain: str) -> str:
    """
    Turn a raw domain into a URL.

    ``example.com`` -> ``https://www.example.com``; ``www.example.com`` ->
    ``https://www.example.com``; URLs with a scheme are returned unchanged;
    blank input returns ``""``.
    """
    if not domain or not domain.strip():
        return ""

    domain = domain.strip()
    if domain.startswith("http://") or domain.startswith("https://"):
        return domain
    if domain.startswith("www."):
        return f"https://{domain}"
    return f"https://www.{domain}"


def resolve_redirect(current_url: str, location: str) -> str:
    """Resolve a Location header against the current URL's scheme and host."""
    if location.startswith("http://") or location.startswith("https://"):
        return location

    parsed = urlparse(current_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    if location.startswith("/"):
        return f"{origin}{location}"
    return f"{origin}/{location}"


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Walk __cause__/__context__ plus urllib3's ``reason`` attribute."""
    seen = set()
    stack = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.append(current.__cause__)
        stack.append(current.__context__)
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            stack.append(reason)
        for arg in getattr(current, "args", ()):
            if isinstance(arg, BaseException):
                stack.append(arg)


def classify_request_error(exc: BaseException) -> str:
    """Map a transport exception to a categorical status string."""
    if isinstance(exc, (requests.exceptions.Timeout, socket.timeout, TimeoutError)):
        return "TIMEOUT"
    if isinstance(exc, (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
                        requests.exceptions.InvalidSchema)):
        return "INVALID_URL"

    chain = list(_exception_chain(exc))
    for err in chain:
        if isinstance(err, socket.gaierror) or type(err).__name__ == "NameResolutionError":
            return "DNS_ERROR"
        if "Name or service not known" in str(err) or "nodename nor servname" in str(err):
            return "DNS_ERROR"
    for err in chain:
        if isinstance(err, ConnectionRefusedError):
            return "CONNECTION_REFUSED"
        if isinstance(err, (socket.timeout, TimeoutError)) or type(err).__name__ in ("ConnectTimeoutError", "ReadTimeoutError"):
            return "TIMEOUT"
    for err in chain:
        if isinstance(err, (ssl.SSLError, requests.exceptions.SSLError)):
            return "ERROR_SSL"
    for err in chain:
        code = getattr(err, "errno", None)
        if isinstance(code, int) and code in errno.errorcode:
            return f"ERROR_{errno.errorcode[code]}"
    return "ERROR_UNKNOWN"


def create_session() -> requests.Session:
    """Plain session; redirects are followed by probe_url itself."""
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    return session


def probe_url(
    url: str,
    session: Optional[requests.Session] = None,
    timeout: float = 10.0,
    max_redirects: int = 5,
    headers: Optional[Dict[str, str]] = None,
) -> ProbeResult:
    """
    Request a URL and follow redirects by hand.

    Args:
        url: Absolute URL to probe
        session: requests session (a fresh one is created if omitted)
        timeout: Per-request timeout in seconds
        max_redirects: Redirects to follow before giving up
        headers: Request headers (browser-like User-Agent by default)

    Returns:
        ProbeResult(final_url, status); status is "" for blank input
    """
    if not url or not url.strip():
        return ProbeResult(final_url="", status="")

    session = session or create_session()
    headers = headers or DEFAULT_HEADERS
    current_url = url.strip()
    redirect_count = 0

    while True:
        try:
            response = session.get(
                current_url,
                headers=headers,
                timeout=timeout,
                allow_redirects=False,
                stream=True,
            )
        except requests.RequestException as e:
            status = classify_request_error(e)
            logger.debug("%s failed: %s (%s)", current_url, status, e)
            return ProbeResult(final_url=current_url, status=status)
        except ValueError:
            return ProbeResult(final_url=current_url, status="INVALID_URL")

        try:
            status_code = response.status_code
            location = response.headers.get("Location")
        finally:
            response.close()

        if status_code in REDIRECT_CODES and location:
            if redirect_count >= max_redirects:
                return ProbeResult(final_url=current_url, status=f"{status_code}_MAX_REDIRECTS")
            redirect_count += 1
            current_url = resolve_redirect(current_url, location)
            continue

        return ProbeResult(final_url=current_url, status=str(status_code))


def check_robots_txt(
    base_url: str,
    session: Optional[requests.Session] = None,
    timeout: float = 10.0,
) -> str:
    """Return the status of ``<scheme>://<host>/robots.txt`` ("" for blank input)."""
    if not base_url or not base_url.strip():
        return ""

    parsed = urlparse(base_url.strip())
    if not parsed.scheme or not parsed.netloc:
        return "INVALID_URL"

    robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
    session = session or create_session()
    try:
        response = session.get(
            robots_url,
            headers=ROBOTS_HEADERS,
            timeout=timeout,
            allow_redirects=False,
            stream=True,
        )
    except requests.RequestException as e:
        return classify_request_error(e)

    try:
        return str(response.status_code)
    finally:
        response.close()


# =============================================================================
# CSV passes
# =============================================================================

def process_urls(
    config: ProbeConfig,
    session: Optional[requests.Session] = None,
    delay_seconds: float = 0.0,
) -> CountryTable:
    """
    Normalize and probe every ministry URL in the CSV, writing results back.

    Renames the legacy ``foreign_affairs_ministry_domain`` column, drops the
    old ``url_working`` column and appends ``http_response_code``. When a
    redirect chain ends in 200, the final URL replaces the stored one.

    Raises:
        ConfigurationError: If neither URL column exists
    """
    table = CountryTable.load(config.csv_path)
    url_column = table.require_column(LEGACY_DOMAIN_COLUMN, URL_COLUMN)
    if url_column == LEGACY_DOMAIN_COLUMN:
        table.rename_column(LEGACY_DOMAIN_COLUMN, URL_COLUMN)
    table.drop_column(LEGACY_URL_WORKING_COLUMN)
    table.ensure_column(STATUS_COLUMN)

    session = session or create_session()
    for i, row in enumerate(table.rows):
        domain = row.get(URL_COLUMN, "")
        normalized = normalize_url(domain)
        status = ""

        if normalized:
            if i > 0 and delay_seconds:
                time.sleep(delay_seconds)
            result = probe_url(
                normalized,
                session=session,
                timeout=config.timeout_seconds,
                max_redirects=config.max_redirects,
            )
            status = result.status
            if result.final_url != normalized and status == "200":
                logger.info("%s -> %s - HTTP %s (followed redirect)", domain, result.final_url, status)
                normalized = result.final_url
            else:
                logger.info("%s - HTTP %s", normalized, status)

        row[URL_COLUMN] = normalized
        row[STATUS_COLUMN] = status

    table.save()
    logger.info("Wrote %d rows to %s", len(table.rows), table.path)
    return table


def check_robots(config: ProbeConfig, session: Optional[requests.Session] = None) -> CountryTable:
    """Fill the ``robots_txt`` column for every row with a URL."""
    table = CountryTable.load(config.csv_path)
    table.require_column(URL_COLUMN)
    table.ensure_column(ROBOTS_COLUMN)

    session = session or create_session()
    checked = 0
    for row in table.rows:
        url = row.get(URL_COLUMN, "")
        status = ""
        if url:
            status = check_robots_txt(url, session=session, timeout=config.timeout_seconds)
            logger.info("robots.txt for %s (%s): %s", row.get(COUNTRY_COLUMN, ""), url, status)
            checked += 1
        row[ROBOTS_COLUMN] = status

    table.save()
    logger.info("Wrote robots.txt status for %d URLs", checked)
    return table


def retry_blocked(
    config: ProbeConfig,
    session: Optional[requests.Session] = None,
    timeout: float = RETRY_TIMEOUT_SECONDS,
) -> int:
    """
    Re-probe rows recorded as 403 or TIMEOUT using full browser headers.

    Returns:
        Number of rows retried (the CSV is only rewritten when > 0)
    """
    table = CountryTable.load(config.csv_path)
    table.require_column(URL_COLUMN)
    table.require_column(STATUS_COLUMN)

    session = session or create_session()
    retried = 0
    for row in table.rows:
        url = row.get(URL_COLUMN, "")
        previous = row.get(STATUS_COLUMN, "")
        if not url or previous not in RETRYABLE_STATUSES:
            continue

        logger.info("Retrying %s: %s (was %s)", row.get(COUNTRY_COLUMN, ""), url, previous)
        result = probe_url(
            url,
            session=session,
            timeout=timeout,
            max_redirects=config.max_redirects,
            headers=BROWSER_HEADERS,
        )
        if result.final_url != url and result.status == "200":
            row[URL_COLUMN] = result.final_url
        row[STATUS_COLUMN] = result.status
        retried += 1

    if retried == 0:
        logger.info("No URLs with 403 or TIMEOUT found to retry.")
        return 0

    table.save()
    logger.info("Wrote updated CSV with %d retried URLs", retried)
    return retried


# =============================================================================
# CLI
# =============================================================================

def _build_parser(prog: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument("--csv", help="Path to national_governments.csv")
    parser.add_argument("--config", help="Path to pipeline.yaml")
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds")
    return parser


def _load_probe_config(args: argparse.Namespace) -> ProbeConfig:
    config = probe_config_from_yaml(load_yaml_config(args.config), csv_path=args.csv)
    if args.timeout is not None:
        config = ProbeConfig(csv_path=config.csv_path, timeout_seconds=args.timeout,
                             max_redirects=config.max_redirects)
    return config


def _run(argv: Optional[Sequence[str]], prog: str, description: str, action) -> int:
    configure_logging()
    parser = _build_parser(prog, description)
    args = parser.parse_args(argv)
    try:
        action(_load_probe_config(args))
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Probe every ministry URL and record HTTP status codes."""
    return _run(argv, "mofa-probe", "Normalize and probe ministry URLs", process_urls)


def robots_main(argv: Optional[List[str]] = None) -> int:
    """Record robots.txt availability for every ministry URL."""
    return _run(argv, "mofa-robots", "Check robots.txt for ministry URLs", check_robots)


def retry_main(argv: Optional[List[str]] = None) -> int:
    """Retry URLs previously recorded as 403 or TIMEOUT."""
    return _run(argv, "mofa-retry-blocked", "Retry blocked ministry URLs with browser headers", retry_blocked)


if __name__ == "__main__":
    sys.exit(main())
