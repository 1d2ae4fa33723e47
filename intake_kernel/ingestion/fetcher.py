"""
Web Fetcher — bounded, SSRF-filtered HTTP GET for artifact ingestion.

Redirects are followed by hand so every hop can be re-validated against the
host blocklist before any request is sent to it.
"""

import logging
from typing import Optional

import httpx

from intake_kernel.config import IntakeSettings
from intake_kernel.ingestion.urls import INVALID_URL, canonicalize_url, resolve_redirect
from intake_kernel.models.artifact import FetchOutcome

logger = logging.getLogger(__name__)

TIMEOUT = "TIMEOUT"
FETCH_ERROR = "FETCH_ERROR"
REDIRECT_MISSING_LOCATION = "REDIRECT_MISSING_LOCATION"
REDIRECT_LIMIT_EXCEEDED = "REDIRECT_LIMIT_EXCEEDED"
REDIRECT_INVALID_URL = "REDIRECT_INVALID_URL"
UNSUPPORTED_CONTENT_TYPE = "UNSUPPORTED_CONTENT_TYPE"
HTTP_STATUS_NOT_OK = "HTTP_STATUS_NOT_OK"

ACCEPTED_CONTENT_TYPES = ("text/html", "text/plain")
REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class WebFetcher:
    """Synchronous fetcher. Pass a preconfigured httpx.Client to control transport."""

    def __init__(self, settings: IntakeSettings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(settings.fetch_timeout_seconds),
            follow_redirects=False,
            headers={"User-Agent": settings.user_agent},
        )

    def fetch(self, url: str) -> FetchOutcome:
        canonical, error = canonicalize_url(url)
        if error:
            return FetchOutcome(ok=False, error_code=error)

        current = canonical
        redirects = 0
        while True:
            try:
                outcome = self._fetch_once(current)
            except httpx.TimeoutException as e:
                logger.warning("Fetch timed out for %s: %s", current, e)
                return FetchOutcome(ok=False, final_url=current, redirect_count=redirects,
                                    error_code=TIMEOUT, error_detail=str(e))
            except httpx.HTTPError as e:
                logger.warning("Fetch failed for %s: %s", current, e)
                return FetchOutcome(ok=False, final_url=current, redirect_count=redirects,
                                    error_code=FETCH_ERROR, error_detail=str(e))

            outcome.redirect_count = redirects
            if outcome.http_status not in REDIRECT_STATUSES:
                return outcome

            location = outcome.redirect_location
            if not location:
                return FetchOutcome(ok=False, final_url=current, http_status=outcome.http_status,
                                    redirect_count=redirects, error_code=REDIRECT_MISSING_LOCATION)
            if redirects >= self.settings.max_redirects:
                return FetchOutcome(ok=False, final_url=current, http_status=outcome.http_status,
                                    redirect_count=redirects, error_code=REDIRECT_LIMIT_EXCEEDED)
            next_url, redirect_error = resolve_redirect(current, location)
            if redirect_error:
                code = redirect_error if redirect_error != INVALID_URL else REDIRECT_INVALID_URL
                return FetchOutcome(ok=False, final_url=current, http_status=outcome.http_status,
                                    redirect_count=redirects, error_code=code,
                                    error_detail=location)
            redirects += 1
            current = next_url

    def _fetch_once(self, url: str) -> FetchOutcome:
        """
        One GET. For redirect statuses only the Location header is read;
        the body is left untouched.
        """
        cap = self.settings.max_fetch_bytes
        with self._client.stream("GET", url) as response:
            status = response.status_code
            if status in REDIRECT_STATUSES:
                return FetchOutcome(ok=False, final_url=url, http_status=status,
                                    redirect_location=response.headers.get("location"))

            content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
            if not 200 <= status < 300:
                return FetchOutcome(ok=False, final_url=url, http_status=status,
                                    content_type=content_type, error_code=HTTP_STATUS_NOT_OK)
            if content_type not in ACCEPTED_CONTENT_TYPES:
                return FetchOutcome(ok=False, final_url=url, http_status=status,
                                    content_type=content_type, error_code=UNSUPPORTED_CONTENT_TYPE)

            buffer = bytearray()
            truncated = False
            for chunk in response.iter_bytes():
                remaining = cap - len(buffer)
                if len(chunk) > remaining:
                    buffer.extend(chunk[:remaining])
                    truncated = True
                    break
                buffer.extend(chunk)

            encoding = response.encoding or "utf-8"
            try:
                body = bytes(buffer).decode(encoding, errors="replace")
            except LookupError:
                body = bytes(buffer).decode("utf-8", errors="replace")

        return FetchOutcome(
            ok=True,
            final_url=url,
            http_status=status,
            content_type=content_type,
            body=body,
            bytes_read=len(buffer),
            truncated=truncated,
        )

    def close(self) -> None:
        self._client.close()
