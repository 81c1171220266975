"""Persistence of diff records, one JSON document per image."""
import json
import logging
import os
import tempfile
from typing import Iterator

from .errors import OutputDirError, PersistFailure
from .models import DiffRecord

_LOG = logging.getLogger(__name__)

DIFF_SUFFIX = "-diff.json"
# mkstemp creates files 0600; diff records are world-readable
DIFF_MODE = 0o644


def diff_filename(image: str) -> str:
    return image.replace("/", "-") + DIFF_SUFFIX


def ensure_output_dir(path: str) -> str:
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as exc:
        raise OutputDirError(f"error creating output directory {path}: {exc}") from exc
    return path


class DiffStore:
    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def path_for(self, image: str) -> str:
        return os.path.join(self.output_dir, diff_filename(image))

    def exists(self, image: str) -> bool:
        return os.path.exists(self.path_for(image))

    def save(self, record: DiffRecord) -> str:
        """Write ``record`` atomically; a partial file never looks persisted."""
        path = self.path_for(record.image_name)
        try:
            content = json.dumps(record.to_dict(), indent=1)
            fd, tmp = tempfile.mkstemp(dir=self.output_dir, prefix=".tmp-", suffix=".json.part")
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(content)
                os.chmod(tmp, DIFF_MODE)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise PersistFailure(record.image_name, f"cannot write {path}: {exc}") from exc
        return path

    @staticmethod
    def load(path: str) -> DiffRecord:
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exc:
                raise ValueError(f"invalid JSON: {exc}") from exc
        return DiffRecord.from_dict(data)

    def iter_records(self) -> Iterator[DiffRecord]:
        """Every readable record under the output directory, recursively."""
        for root, dirs, files in os.walk(self.output_dir):
            dirs.sort()
            for name in sorted(files):
                if not name.endswith(".json"):
                    continue
                path = os.path.join(root, name)
                try:
                    yield self.load(path)
                except (OSError, ValueError) as exc:
                    _LOG.warning("%s: skipping unreadable diff record: %s", name, exc)
