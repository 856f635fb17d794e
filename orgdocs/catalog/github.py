"""GitHub REST catalog of organization repositories."""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional
from urllib.error import HTTPError
from urllib.parse import quote
from urllib.request import Request, urlopen

from ..config import GitHubConfig, resolve_token
from ..errors import AuthRequired, CatalogError, CatalogUnavailable, RateLimited
from ..logging import get_logger
from ..models import RepositoryDescriptor

_NEXT_LINK = re.compile(r'<([^>]+)>\s*;\s*rel="next"')
_PAGE_SIZE = 100


@dataclass
class HttpResponse:
    """Minimal view of an HTTP response used by the catalog."""

    status: int
    headers: Mapping[str, str]
    body: bytes

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def json(self) -> object:
        return json.loads(self.body.decode("utf-8"))


Transport = Callable[[str, Dict[str, str], float], HttpResponse]


class GitHubCatalog:
    """Lists organization repositories with pagination and rate-limit handling."""

    def __init__(
        self,
        config: GitHubConfig | None = None,
        *,
        docs_dir: str = "docs",
        transport: Transport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or GitHubConfig()
        self.docs_dir = docs_dir.strip("/") or "docs"
        self._transport = transport or self._default_transport
        self._sleep = sleep
        self._clock = clock
        self._token = resolve_token(self.config)
        self.logger = get_logger("catalog")

    def fetch_all(self, org: str, *, probe_docs: bool = False) -> List[RepositoryDescriptor]:
        """Return every repository owned by ``org`` sorted by name."""
        if not org:
            raise CatalogUnavailable("No organization configured")
        base = self.config.api_url.rstrip("/")
        owner = quote(org, safe="")
        query = f"type=all&per_page={_PAGE_SIZE}"
        url: Optional[str] = f"{base}/orgs/{owner}/repos?{query}"
        fallback: Optional[str] = f"{base}/users/{owner}/repos?{query}"

        items: List[dict] = []
        page = 0
        while url:
            response = self._request(url)
            if response.status == 404 and page == 0 and fallback:
                self.logger.debug("%s is not an organization; trying user endpoint", org)
                url, fallback = fallback, None
                continue
            if response.status != 200:
                raise CatalogUnavailable(
                    f"Listing repositories for {org} failed with status {response.status}"
                )
            payload = self._decode(response, url)
            if not isinstance(payload, list):
                raise CatalogUnavailable(f"Unexpected catalog payload from {url}")
            items.extend(item for item in payload if isinstance(item, dict))
            page += 1
            url = _next_link(response.header("Link"))

        descriptors = [_descriptor_from_payload(item, org) for item in items]
        if probe_docs:
            descriptors = [self._with_docs_probe(descriptor) for descriptor in descriptors]
        descriptors.sort(key=lambda descriptor: descriptor.name)
        self.logger.info("Fetched %d repositories for %s (%d pages)", len(descriptors), org, page)
        return descriptors

    def has_docs_directory(self, descriptor: RepositoryDescriptor) -> bool:
        """Return whether the repository's default branch has a docs directory."""
        url = (
            f"{self.config.api_url.rstrip('/')}/repos/{quote(descriptor.owner, safe='')}/"
            f"{quote(descriptor.name, safe='')}/contents/{quote(self.docs_dir)}"
            f"?ref={quote(descriptor.default_branch, safe='')}"
        )
        response = self._request(url)
        if response.status == 404:
            return False
        if response.status != 200:
            raise CatalogUnavailable(
                f"Docs probe for {descriptor.full_name} failed with status {response.status}"
            )
        return isinstance(self._decode(response, url), list)

    # ------------------------------------------------------------------
    # Internals

    def _with_docs_probe(self, descriptor: RepositoryDescriptor) -> RepositoryDescriptor:
        try:
            present = self.has_docs_directory(descriptor)
        except CatalogError as exc:
            self.logger.warning("Could not check docs directory for %s: %s", descriptor.name, exc)
            return replace(descriptor, has_docs_directory=None, docs_probe_error=str(exc))
        return replace(descriptor, has_docs_directory=present, docs_probe_error=None)

    def _request(self, url: str) -> HttpResponse:
        attempt = 0
        while True:
            try:
                response = self._transport(url, self._headers(), self.config.timeout)
            except OSError as exc:
                if attempt >= self.config.max_retries:
                    raise CatalogUnavailable(f"GitHub API unreachable: {exc}") from exc
                delay = self._backoff(attempt)
                self.logger.debug("Request to %s failed (%s); retrying in %.1fs", url, exc, delay)
                self._sleep(delay)
                attempt += 1
                continue

            if 200 <= response.status < 300 or response.status == 404:
                return response

            if self._is_rate_limited(response):
                delay = self._rate_limit_delay(response, attempt)
                if attempt >= self.config.max_retries:
                    raise RateLimited(
                        f"GitHub API rate limit still exceeded after {attempt} retries",
                        retry_after=delay,
                    )
                self.logger.warning("Rate limited by GitHub API; backing off %.1fs", delay)
                self._sleep(delay)
                attempt += 1
                continue

            if response.status in (401, 403):
                hint = "" if self._token else " (no token configured; set GITHUB_TOKEN)"
                raise AuthRequired(
                    f"GitHub API rejected credentials with status {response.status}{hint}"
                )

            if response.status >= 500:
                if attempt >= self.config.max_retries:
                    raise CatalogUnavailable(
                        f"GitHub API kept failing with status {response.status}"
                    )
                delay = self._backoff(attempt)
                self.logger.debug("GitHub API returned %d; retrying in %.1fs", response.status, delay)
                self._sleep(delay)
                attempt += 1
                continue

            return response

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "orgdocs",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _is_rate_limited(response: HttpResponse) -> bool:
        if response.status not in (403, 429):
            return False
        if response.status == 429:
            return True
        if response.header("X-RateLimit-Remaining") == "0":
            return True
        if response.header("Retry-After") is not None:
            return True
        return b"rate limit" in response.body.lower()

    def _rate_limit_delay(self, response: HttpResponse, attempt: int) -> float:
        retry_after = response.header("Retry-After")
        if retry_after:
            try:
                return min(max(float(retry_after), 0.0), self.config.max_backoff)
            except ValueError:
                pass
        reset = response.header("X-RateLimit-Reset")
        if reset:
            try:
                wait = float(reset) - self._clock()
            except ValueError:
                wait = None
            if wait is not None:
                return min(max(wait, 0.0) + 1.0, self.config.max_backoff)
        return self._backoff(attempt)

    def _backoff(self, attempt: int) -> float:
        return min(self.config.backoff_base * (2 ** attempt), self.config.max_backoff)

    @staticmethod
    def _decode(response: HttpResponse, url: str) -> object:
        try:
            return response.json()
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CatalogUnavailable(f"GitHub API returned invalid JSON for {url}") from exc

    @staticmethod
    def _default_transport(url: str, headers: Dict[str, str], timeout: float) -> HttpResponse:
        request = Request(url, headers=headers, method="GET")
        try:
            with urlopen(request, timeout=timeout) as response:  # type: ignore[arg-type]
                return HttpResponse(
                    status=response.status,
                    headers=dict(response.headers.items()),
                    body=response.read(),
                )
        except HTTPError as exc:
            body = exc.read() if hasattr(exc, "read") else b""
            headers_map = dict(exc.headers.items()) if exc.headers else {}
            return HttpResponse(status=exc.code, headers=headers_map, body=body or b"")


def _next_link(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    match = _NEXT_LINK.search(header)
    return match.group(1) if match else None


def _descriptor_from_payload(item: dict, org: str) -> RepositoryDescriptor:
    owner_data = item.get("owner")
    owner = org
    if isinstance(owner_data, dict) and isinstance(owner_data.get("login"), str):
        owner = owner_data["login"]
    visibility = item.get("visibility")
    if not isinstance(visibility, str):
        visibility = "private" if item.get("private") else "public"
    name = str(item.get("name", ""))
    return RepositoryDescriptor(
        name=name,
        owner=owner,
        default_branch=str(item.get("default_branch") or "main"),
        visibility=visibility,
        is_fork=bool(item.get("fork")),
        is_archived=bool(item.get("archived")),
        has_docs_directory=None,
        last_updated=_parse_timestamp(item.get("pushed_at") or item.get("updated_at")),
        clone_url=str(item.get("clone_url") or f"https://github.com/{owner}/{name}.git"),
        html_url=str(item.get("html_url") or f"https://github.com/{owner}/{name}"),
    )


def _parse_timestamp(value: object) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


__all__ = ["GitHubCatalog", "HttpResponse", "Transport"]
