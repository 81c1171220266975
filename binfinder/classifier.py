"""OS classifier - maps an image to the package-manager family it uses."""
import logging
from typing import Optional

from .config import FALLBACK_RHEL, Config
from .errors import ExecutionFailure, ProbeFailure
from .executor import CommandTemplate
from .models import OSFamily

_LOG = logging.getLogger(__name__)

# Checked in order; first keyword found in the release line wins
FAMILY_KEYWORDS = (
    (OSFamily.ALPINE, ("alpine",)),
    (OSFamily.DEBIAN_LIKE, ("ubuntu", "debian")),
    (OSFamily.RHEL_LIKE, ("centos",)),
)

# Catch-all for release text naming no known distribution
GENERIC_LINUX_KEYWORD = "linux"

# /etc/centos-release exists on CentOS 6, which has no /etc/os-release
RELEASE_PROBES = (CommandTemplate.OS_RELEASE, CommandTemplate.CENTOS_RELEASE)


def family_from_release(release: str, generic_linux_fallback: str = FALLBACK_RHEL) -> OSFamily:
    """Classify the first line of a release descriptor."""
    line = release.split("\n", 1)[0].lower()
    for family, keywords in FAMILY_KEYWORDS:
        if any(k in line for k in keywords):
            return family
    if GENERIC_LINUX_KEYWORD in line:
        if generic_linux_fallback == FALLBACK_RHEL:
            return OSFamily.RHEL_LIKE
        return OSFamily.UNKNOWN
    return OSFamily.UNKNOWN


class OSClassifier:
    def __init__(self, executor, config: Optional[Config] = None):
        self.executor = executor
        self.config = config or Config()

    def read_release(self, image: str) -> str:
        """Return the first line of the first readable release descriptor."""
        errors = []
        for probe in RELEASE_PROBES:
            try:
                out = self.executor.execute(image, probe)
            except ExecutionFailure as exc:
                _LOG.debug("%s: %s probe failed: %s", image, probe.name, exc)
                errors.append(exc)
                continue
            return out.split("\n", 1)[0]
        raise ProbeFailure(image, "no readable OS release descriptor") from errors[-1]

    def classify(self, image: str) -> OSFamily:
        release = self.read_release(image)
        family = family_from_release(release, self.config.generic_linux_fallback)
        _LOG.info("%s: release %r -> %s", image, release.strip(), family.value)
        return family
