"""Image discovery - lists "popular" images from Docker Hub, a v2 registry, or DTR."""
import base64
import datetime
import json
import logging
import ssl
import urllib.error
import urllib.parse
import urllib.request
from typing import Optional

from .errors import DiscoveryError

_LOG = logging.getLogger(__name__)

USER_AGENT = "binfinder/0.3"

DOCKER_HUB_API = "https://hub.docker.com/v2/repositories/library/?page=1&page_size=100"
DOCKER_HUB_TAG_API = "https://hub.docker.com/v2/repositories/library/{}/tags"


def strip_scheme(host: str) -> str:
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            return host[len(prefix):]
    return host


class ImageProvider:
    """Base for discovery backends; subclasses implement ``get_popular_images``."""

    def __init__(self, user: str = "", password: str = "", timeout: float = 10.0,
                 verify_tls: bool = True):
        self.user = user
        self.password = password
        self.timeout = timeout
        self.verify_tls = verify_tls

    def get_popular_images(self, top: int, all_tags: bool = False) -> list[str]:
        raise NotImplementedError

    def _get_json(self, url: str):
        req = urllib.request.Request(url)
        req.add_header("User-Agent", USER_AGENT)
        req.add_header("Accept", "application/json")
        if self.user:
            creds = base64.b64encode(f"{self.user}:{self.password}".encode()).decode()
            req.add_header("Authorization", f"Basic {creds}")
        ctx = None
        if not self.verify_tls:
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        try:
            with urllib.request.urlopen(req, timeout=self.timeout, context=ctx) as resp:
                return json.loads(resp.read().decode("utf-8", errors="replace"))
        except urllib.error.URLError as exc:
            raise DiscoveryError(f"GET {url} failed: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise DiscoveryError(f"GET {url}: bad response: {exc}") from exc


class DockerHubProvider(ImageProvider):
    def __init__(self, api_url: str = DOCKER_HUB_API, tag_api_url: str = DOCKER_HUB_TAG_API,
                 timeout: float = 10.0):
        super().__init__(timeout=timeout)
        self.api_url = api_url
        self.tag_api_url = tag_api_url

    def get_popular_images(self, top: int, all_tags: bool = False) -> list[str]:
        result: list[str] = []
        url = self.api_url
        while url and len(result) < top:
            _LOG.info("fetching page: %s", url)
            page = self._get_json(url)
            if not isinstance(page, dict):
                raise DiscoveryError(f"GET {url}: unexpected response shape")
            repos = page.get("results") or []
            _LOG.info("found %d images", len(repos))
            for repo in repos:
                name = (repo.get("name") or "").lower()
                if not name:
                    continue
                try:
                    tags = self.get_tags(name, all_tags)
                except DiscoveryError as exc:
                    _LOG.warning("error fetching the tags for image %s: %s", name, exc)
                    continue
                for tag in tags:
                    result.append(f"{name}:{tag}")
                    if len(result) == top:
                        return result
            url = page.get("next")
        return result

    def get_tags(self, name: str, all_tags: bool = False) -> list[str]:
        data = self._get_json(self.tag_api_url.format(urllib.parse.quote(name)))
        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            raise DiscoveryError(f"{name}: invalid tag response")
        tags = [r["name"] for r in results if r.get("name")]
        return tags if all_tags else tags[:1]


class RegistryV2Provider(ImageProvider):
    CATALOG = "/v2/_catalog"
    TAGS = "/v2/{}/tags/list"

    def __init__(self, host: str, user: str = "", password: str = "", timeout: float = 10.0):
        super().__init__(user, password, timeout, verify_tls=False)
        self.host = host.rstrip("/")

    def get_popular_images(self, top: int, all_tags: bool = False) -> list[str]:
        catalog = self._get_json(self.host + self.CATALOG)
        repos = catalog.get("repositories") if isinstance(catalog, dict) else None
        result: list[str] = []
        for repo in repos or []:
            try:
                data = self._get_json(self.host + self.TAGS.format(repo))
            except DiscoveryError as exc:
                _LOG.warning("error fetching the tags for image %s: %s", repo, exc)
                continue
            tags = (data.get("tags") if isinstance(data, dict) else None) or []
            if not all_tags:
                tags = tags[:1]
            for tag in tags:
                if len(result) == top:
                    return result
                result.append(f"{strip_scheme(self.host)}/{repo}:{tag}")
        return result[:top]


class DTRProvider(ImageProvider):
    REPOSITORIES = "/api/v0/repositories"
    TAGS = "/api/v0/repositories/{}/{}/tags"

    def __init__(self, host: str, user: str = "", password: str = "", timeout: float = 10.0):
        super().__init__(user, password, timeout, verify_tls=False)
        self.host = host.rstrip("/")

    def get_popular_images(self, top: int, all_tags: bool = False) -> list[str]:
        data = self._get_json(self.host + self.REPOSITORIES)
        repos = data.get("repositories") if isinstance(data, dict) else None
        result: list[str] = []
        for repo in repos or []:
            if len(result) == top:
                break
            namespace, name = repo.get("namespace", ""), repo.get("name", "")
            try:
                tag = self.latest_tag(namespace, name)
            except DiscoveryError as exc:
                _LOG.warning("error fetching the tag for image %s/%s: %s", namespace, name, exc)
                tag = "latest"
            result.append(f"{strip_scheme(self.host)}/{namespace}/{name}:{tag}")
        return result

    def latest_tag(self, namespace: str, name: str) -> str:
        tags = self._get_json(self.host + self.TAGS.format(namespace, name))
        latest, newest = "latest", None
        for t in tags if isinstance(tags, list) else []:
            updated = _parse_time(t.get("updatedAt", ""))
            if updated is not None and (newest is None or updated > newest):
                newest, latest = updated, t.get("name", "latest")
        return latest


def _parse_time(value: str) -> Optional[datetime.datetime]:
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def provider_for(registry: str = "", user: str = "", password: str = "",
                 dtr: bool = False) -> ImageProvider:
    if not registry:
        return DockerHubProvider()
    if dtr:
        return DTRProvider(registry, user, password)
    return RegistryV2Provider(registry, user, password)
