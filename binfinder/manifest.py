"""Manifest providers - the set of paths each package manager claims to own.

The three package databases share no structure, so each family gets its own
provider and the only common ground is the result: a frozenset of absolute
paths.

  * Alpine: package names from ``/lib/apk/db/installed``, then one
    ``apk info -L`` per package, merged by a single collector.
  * Debian-like: every ``/var/lib/dpkg/info/*.list`` file, unioned.
  * RHEL-like: the ``centos_get_all_pkg.sh`` companion script, which walks
    the rpm database and prints one path per line.
"""
import concurrent.futures
import logging
from typing import Optional, Protocol

from .config import Config
from .errors import ExecutionFailure, ManifestFailure
from .executor import CommandTemplate
from .models import OSFamily

_LOG = logging.getLogger(__name__)

APK_PACKAGE_MARKERS = ("P:", "o:")
DPKG_MANIFEST_SUFFIX = ".list"
RPM_LISTING_SCRIPT = "centos_get_all_pkg"
# Header line printed by `apk info -L`, e.g. "musl-1.2.4-r2 contains:"
LISTING_HEADER_SUFFIX = "contains:"


def normalize_path(entry: str) -> Optional[str]:
    """Strip ``entry`` and make it absolute; None for blank lines."""
    entry = entry.strip()
    if not entry:
        return None
    if not entry.startswith("/"):
        entry = "/" + entry
    return entry


def parse_listing(output: str) -> set:
    """Owned paths from package-manager listing output, one per line."""
    paths = set()
    for line in output.split("\n"):
        line = line.strip()
        if not line or line.endswith(LISTING_HEADER_SUFFIX):
            continue
        paths.add(normalize_path(line))
    return paths


def parse_apk_packages(installed: str) -> list[str]:
    """Package and origin names from an apk ``installed`` database."""
    names = set()
    for line in installed.split("\n"):
        if len(line.strip()) < 2:
            continue
        if line[:2] in APK_PACKAGE_MARKERS:
            name = line[2:].strip()
            if name:
                names.add(name)
    return sorted(names)


class ManifestProvider(Protocol):
    def get_owned_paths(self, image: str) -> frozenset:
        ...


class AlpineManifestProvider:
    """apk: one ``apk info -L`` per installed package, fanned out on a bounded pool."""

    def __init__(self, executor, config: Optional[Config] = None):
        self.executor = executor
        self.config = config or Config()

    def list_packages(self, image: str) -> list[str]:
        try:
            installed = self.executor.execute(image, CommandTemplate.APK_INSTALLED)
        except ExecutionFailure as exc:
            raise ManifestFailure(image, "cannot read apk installed database") from exc
        return parse_apk_packages(installed)

    def package_files(self, image: str, package: str) -> set:
        try:
            out = self.executor.execute(image, CommandTemplate.APK_INFO, package)
        except ExecutionFailure as exc:
            # the origin name may not be an installed package; it just owns nothing
            _LOG.debug("%s: apk info -L %s failed: %s", image, package, exc)
            return set()
        return parse_listing(out)

    def get_owned_paths(self, image: str) -> frozenset:
        packages = self.list_packages(image)
        owned: set = set()
        workers = min(self.config.package_workers, max(len(packages), 1))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="apk-info"
        ) as pool:
            futures = {pool.submit(self.package_files, image, p): p for p in packages}
            # single collector: only this loop writes to `owned`
            for future in concurrent.futures.as_completed(futures):
                owned.update(future.result())
        _LOG.info("%s: %d apk packages own %d paths", image, len(packages), len(owned))
        return frozenset(owned)


class DebianManifestProvider:
    """dpkg: union of every ``*.list`` manifest; any unreadable one aborts the image."""

    def __init__(self, executor, config: Optional[Config] = None):
        self.executor = executor
        self.config = config or Config()

    def list_manifests(self, image: str) -> list[str]:
        try:
            out = self.executor.execute(image, CommandTemplate.DPKG_LIST)
        except ExecutionFailure as exc:
            raise ManifestFailure(image, "cannot list dpkg info directory") from exc
        return sorted({
            name.strip() for name in out.split("\n")
            if name.strip().endswith(DPKG_MANIFEST_SUFFIX)
        })

    def get_owned_paths(self, image: str) -> frozenset:
        manifests = self.list_manifests(image)
        owned: set = set()
        for name in manifests:
            try:
                out = self.executor.execute(image, CommandTemplate.DPKG_READ, name)
            except ExecutionFailure as exc:
                raise ManifestFailure(image, f"cannot read dpkg manifest {name}") from exc
            owned.update(parse_listing(out))
        _LOG.info("%s: %d dpkg manifests own %d paths", image, len(manifests), len(owned))
        return frozenset(owned)


class RHELManifestProvider:
    """rpm: the packaged listing script prints every owned path."""

    def __init__(self, executor, config: Optional[Config] = None):
        self.executor = executor
        self.config = config or Config()

    def get_owned_paths(self, image: str) -> frozenset:
        try:
            out = self.executor.execute(image, CommandTemplate.RUN_SCRIPT, RPM_LISTING_SCRIPT)
        except ExecutionFailure as exc:
            raise ManifestFailure(image, "cannot list rpm owned files") from exc
        owned = frozenset(parse_listing(out))
        _LOG.info("%s: rpm database owns %d paths", image, len(owned))
        return owned


PROVIDERS = {
    OSFamily.ALPINE: AlpineManifestProvider,
    OSFamily.DEBIAN_LIKE: DebianManifestProvider,
    OSFamily.RHEL_LIKE: RHELManifestProvider,
}


def provider_for(family: OSFamily, executor, config: Optional[Config] = None) -> ManifestProvider:
    try:
        cls = PROVIDERS[family]
    except KeyError:
        raise ValueError(f"no manifest provider for OS family {family.value}") from None
    return cls(executor, config)
