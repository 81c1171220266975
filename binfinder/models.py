"""Data models for image reconciliation runs."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class OSFamily(Enum):
    ALPINE = "alpine"
    DEBIAN_LIKE = "debian"
    RHEL_LIKE = "rhel"
    UNKNOWN = "unknown"


class ImageStatus(Enum):
    PENDING = "Pending"
    CLASSIFYING = "Classifying"
    EXTRACTING_MANIFEST = "ExtractingManifest"
    SCANNING = "Scanning"
    RECONCILING = "Reconciling"
    PERSISTED = "Persisted"
    SKIPPED = "Skipped"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (ImageStatus.PERSISTED, ImageStatus.SKIPPED, ImageStatus.FAILED)


@dataclass(frozen=True)
class ScanEntry:
    """One ``path: type-description`` line from the filesystem sweep."""
    path: str
    description: str
    executable: bool = False


@dataclass
class ScanRecord:
    image: str
    entries: list = field(default_factory=list)

    @property
    def executables(self) -> list[str]:
        return [e.path for e in self.entries if e.executable]

    @property
    def executable_count(self) -> int:
        return sum(1 for e in self.entries if e.executable)


@dataclass(frozen=True)
class DiffRecord:
    image_name: str
    elf_names: tuple = ()

    def to_dict(self):
        return {
            "ImageName": self.image_name,
            "ELFNames": list(self.elf_names),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DiffRecord":
        if not isinstance(data, dict):
            raise ValueError("diff record must be a JSON object")
        name = data.get("ImageName")
        names = data.get("ELFNames")
        if not isinstance(name, str) or not name:
            raise ValueError("diff record has no ImageName")
        # Records written for images with nothing unaccounted carry null
        if names is None:
            names = []
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ValueError("diff record ELFNames must be a list of strings")
        return cls(image_name=name, elf_names=tuple(names))


@dataclass
class ImageOutcome:
    image: str
    status: ImageStatus = ImageStatus.PENDING
    os_family: Optional[OSFamily] = None
    executable_count: int = 0
    unaccounted_count: int = 0
    error: Optional[str] = None
    elapsed: float = 0.0

    def to_dict(self):
        return {
            "image": self.image,
            "status": self.status.value,
            "os_family": self.os_family.value if self.os_family else None,
            "executable_count": self.executable_count,
            "unaccounted_count": self.unaccounted_count,
            "error": self.error,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class RunReport:
    outcomes: list = field(default_factory=list)

    def by_status(self, status: ImageStatus) -> list[ImageOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def persisted(self) -> list[ImageOutcome]:
        return self.by_status(ImageStatus.PERSISTED)

    @property
    def skipped(self) -> list[ImageOutcome]:
        return self.by_status(ImageStatus.SKIPPED)

    @property
    def failed(self) -> list[ImageOutcome]:
        return self.by_status(ImageStatus.FAILED)
