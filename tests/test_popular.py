"""Image discovery providers with canned HTTP responses."""

from __future__ import annotations

import pytest

from binfinder.errors import DiscoveryError
from binfinder.popular import (
    DockerHubProvider,
    DTRProvider,
    RegistryV2Provider,
    provider_for,
    strip_scheme,
)


def _serve(monkeypatch: pytest.MonkeyPatch, provider, pages: dict) -> list[str]:
    requested: list[str] = []

    def fake_get_json(url: str):
        requested.append(url)
        value = pages[url]
        if isinstance(value, Exception):
            raise value
        return value

    monkeypatch.setattr(provider, "_get_json", fake_get_json)
    return requested


def test_docker_hub_pages_until_top(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = DockerHubProvider(api_url="hub/page1", tag_api_url="hub/{}/tags")
    _serve(monkeypatch, provider, {
        "hub/page1": {"results": [{"name": "Alpine"}, {"name": "nginx"}], "next": "hub/page2"},
        "hub/page2": {"results": [{"name": "redis"}], "next": None},
        "hub/alpine/tags": {"results": [{"name": "latest"}, {"name": "3.18"}]},
        "hub/nginx/tags": DiscoveryError("boom"),
        "hub/redis/tags": {"results": [{"name": "7"}]},
    })

    assert provider.get_popular_images(2) == ["alpine:latest", "redis:7"]


def test_docker_hub_all_tags(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = DockerHubProvider(api_url="hub/page1", tag_api_url="hub/{}/tags")
    _serve(monkeypatch, provider, {
        "hub/page1": {"results": [{"name": "alpine"}], "next": None},
        "hub/alpine/tags": {"results": [{"name": "latest"}, {"name": "3.18"}, {"name": "3.17"}]},
    })

    assert provider.get_popular_images(10, all_tags=True) == [
        "alpine:latest", "alpine:3.18", "alpine:3.17",
    ]


def test_docker_hub_listing_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = DockerHubProvider(api_url="hub/page1")
    _serve(monkeypatch, provider, {"hub/page1": DiscoveryError("unreachable")})
    with pytest.raises(DiscoveryError):
        provider.get_popular_images(5)


def test_registry_v2(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = RegistryV2Provider("https://registry.local/", "u", "p")
    _serve(monkeypatch, provider, {
        "https://registry.local/v2/_catalog": {"repositories": ["team/app", "base"]},
        "https://registry.local/v2/team/app/tags/list": {"tags": ["1.0", "1.1"]},
        "https://registry.local/v2/base/tags/list": {"tags": ["stable"]},
    })

    assert provider.get_popular_images(5) == [
        "registry.local/team/app:1.0", "registry.local/base:stable",
    ]
    assert provider.get_popular_images(1, all_tags=True) == ["registry.local/team/app:1.0"]


def test_dtr_picks_most_recent_tag(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = DTRProvider("https://dtr.local", "u", "p")
    _serve(monkeypatch, provider, {
        "https://dtr.local/api/v0/repositories": {
            "repositories": [{"namespace": "ops", "name": "agent"},
                             {"namespace": "ops", "name": "broken"}],
        },
        "https://dtr.local/api/v0/repositories/ops/agent/tags": [
            {"name": "1.0", "updatedAt": "2023-01-01T00:00:00Z"},
            {"name": "2.0", "updatedAt": "2024-06-01T12:00:00Z"},
            {"name": "1.5", "updatedAt": "2023-09-01T00:00:00Z"},
        ],
        "https://dtr.local/api/v0/repositories/ops/broken/tags": DiscoveryError("403"),
    })

    assert provider.get_popular_images(5) == [
        "dtr.local/ops/agent:2.0", "dtr.local/ops/broken:latest",
    ]


def test_provider_for() -> None:
    assert isinstance(provider_for(), DockerHubProvider)
    assert isinstance(provider_for("https://r", "u", "p"), RegistryV2Provider)
    assert isinstance(provider_for("https://r", "u", "p", dtr=True), DTRProvider)
    assert strip_scheme("http://r:5000") == "r:5000"
