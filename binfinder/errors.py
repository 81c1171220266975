"""Exception taxonomy shared by the reconciliation pipeline."""
from typing import Optional


class BinfinderError(Exception):
    pass


class ConfigError(BinfinderError):
    pass


class OutputDirError(BinfinderError):
    pass


class DiscoveryError(BinfinderError):
    pass


class ExecutionFailure(BinfinderError):
    """A container run could not complete or exited non-zero."""

    def __init__(self, image: str, command: list, returncode: Optional[int] = None,
                 stderr: str = "", timed_out: bool = False, reason: str = ""):
        self.image = image
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        detail = reason or (stderr.strip().splitlines()[-1] if stderr.strip() else "")
        if timed_out:
            msg = f"{image}: command timed out: {' '.join(self.command)}"
        else:
            msg = f"{image}: command failed (rc={returncode}): {' '.join(self.command)}"
        if detail:
            msg += f" - {detail[:300]}"
        super().__init__(msg)


class ImageError(BinfinderError):
    """Base for failures scoped to one image."""

    def __init__(self, image: str, message: str):
        self.image = image
        super().__init__(f"{image}: {message}")


class ProbeFailure(ImageError):
    pass


class ManifestFailure(ImageError):
    pass


class ScanFailure(ImageError):
    pass


class PersistFailure(ImageError):
    pass
