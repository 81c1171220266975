"""Binary scanner - filesystem-wide ``file`` sweep, classified into executables."""
import logging
from typing import Optional

from .config import Config
from .errors import ExecutionFailure, ScanFailure
from .executor import CommandTemplate
from .models import OSFamily, ScanEntry, ScanRecord

_LOG = logging.getLogger(__name__)

ELF_MARKER = "ELF"
SHARED_OBJECT_SUFFIX = ".so"
SHARED_OBJECT_INFIX = ".so."

SCAN_SCRIPTS = {
    OSFamily.ALPINE: "alpine",
    OSFamily.DEBIAN_LIKE: "ubuntu",
    OSFamily.RHEL_LIKE: "centos",
}


def is_executable(path: str, description: str, tooling_marker: str = "binfinder") -> bool:
    if not description.strip().startswith(ELF_MARKER):
        return False
    if path.endswith(SHARED_OBJECT_SUFFIX) or SHARED_OBJECT_INFIX in path:
        return False
    return tooling_marker not in path


def parse_line(line: str, tooling_marker: str = "binfinder") -> Optional[ScanEntry]:
    """Parse one ``path: description`` line; None if it carries no path."""
    path, sep, description = line.partition(":")
    if not sep:
        return None
    path = path.strip()
    if not path:
        return None
    description = description.strip()
    return ScanEntry(path, description, is_executable(path, description, tooling_marker))


def parse_sweep(image: str, output: str, tooling_marker: str = "binfinder") -> ScanRecord:
    record = ScanRecord(image=image)
    for line in output.split("\n"):
        entry = parse_line(line, tooling_marker)
        if entry is not None:
            record.entries.append(entry)
    return record


class BinaryScanner:
    def __init__(self, executor, config: Optional[Config] = None):
        self.executor = executor
        self.config = config or Config()

    def scan_executables(self, image: str, family: OSFamily) -> ScanRecord:
        try:
            script = SCAN_SCRIPTS[family]
        except KeyError:
            raise ScanFailure(image, f"no sweep script for OS family {family.value}") from None
        try:
            out = self.executor.execute(image, CommandTemplate.RUN_SCRIPT, script)
        except ExecutionFailure as exc:
            raise ScanFailure(image, "filesystem sweep failed") from exc

        record = parse_sweep(image, out, self.config.tooling_marker)
        _LOG.info("%s: sweep typed %d files, %d executables",
                  image, len(record.entries), record.executable_count)
        return record
