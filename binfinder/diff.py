"""Diff engine - executables found on disk that nothing accounts for."""
from typing import Iterable

from .models import DiffRecord, ScanRecord


def reconcile(image: str, manifest: Iterable[str], scan: ScanRecord,
              allowlist: Iterable[str] = ()) -> DiffRecord:
    """Build the diff record for ``image``.

    ``manifest`` may be empty when extraction degraded; the image then
    over-reports rather than failing.
    """
    owned = set(manifest)
    owned.update(allowlist)

    unaccounted = []
    seen = set()
    for path in scan.executables:
        if path in owned or path in seen:
            continue
        seen.add(path)
        unaccounted.append(path)

    unaccounted.sort()
    return DiffRecord(image_name=image, elf_names=tuple(unaccounted))
