"""Orchestrator - classify, extract, scan and reconcile many images in parallel.

Per image:  Pending -> Classifying -> ExtractingManifest -> Scanning
            -> Reconciling -> Persisted, or Skipped / Failed.

At most ``Config.workers`` images are in flight.  Images never share mutable
state; each writes its own diff file, so results need no locking and arrive
in no particular order.
"""
import concurrent.futures
import logging
import time
from typing import Iterable, Optional

from .classifier import OSClassifier
from .config import Config
from .diff import reconcile
from .errors import BinfinderError, ExecutionFailure, ProbeFailure
from .manifest import provider_for
from .models import ImageOutcome, ImageStatus, OSFamily, RunReport
from .scanner import BinaryScanner
from .store import DiffStore

_LOG = logging.getLogger(__name__)


def repository_name(image: str) -> str:
    """``image`` without its tag or digest."""
    image = image.split("@", 1)[0]
    head, sep, last = image.rpartition("/")
    last = last.split(":", 1)[0]
    return head + sep + last


class Orchestrator:
    def __init__(self, executor, config: Optional[Config] = None,
                 store: Optional[DiffStore] = None):
        self.executor = executor
        self.config = config or Config()
        self.store = store or DiffStore(self.config.output_dir)
        self.classifier = OSClassifier(executor, self.config)
        self.scanner = BinaryScanner(executor, self.config)

    # ──────────────────────────────────────────────────────── public entry point

    def run(self, images: Iterable[str]) -> RunReport:
        report = RunReport()
        admitted = []
        seen = set()
        for image in images:
            image = image.strip()
            if not image or image in seen:
                continue
            seen.add(image)
            outcome = ImageOutcome(image=image)
            report.outcomes.append(outcome)
            reason = self.skip_reason(image)
            if reason:
                self._skip(outcome, reason)
            else:
                admitted.append(outcome)

        if not admitted:
            return report

        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.workers, thread_name_prefix="binfinder"
        )
        futures = {pool.submit(self.process, o): o for o in admitted}
        try:
            for future in concurrent.futures.as_completed(futures):
                future.result()
        except KeyboardInterrupt:
            _LOG.warning("interrupted, aborting %d image(s)",
                         sum(1 for f in futures if not f.done()))
            self.executor.abort()
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return report

    def skip_reason(self, image: str) -> Optional[str]:
        sentinels = self.config.sentinel_images
        if image in sentinels or repository_name(image) in sentinels:
            return "sentinel image"
        if self.store.exists(image):
            return "diff already present"
        return None

    def process(self, outcome: ImageOutcome) -> ImageOutcome:
        """Run the whole pipeline for one image; never raises for image errors."""
        image = outcome.image
        start = time.monotonic()
        try:
            self._advance(outcome, ImageStatus.CLASSIFYING)
            family = self._classify(image)
            outcome.os_family = family
            if family is OSFamily.UNKNOWN:
                self._skip(outcome, "unsupported OS")
                return outcome

            self._advance(outcome, ImageStatus.EXTRACTING_MANIFEST)
            manifest = provider_for(family, self.executor, self.config).get_owned_paths(image)

            self._advance(outcome, ImageStatus.SCANNING)
            scan = self.scanner.scan_executables(image, family)
            outcome.executable_count = scan.executable_count

            self._advance(outcome, ImageStatus.RECONCILING)
            record = reconcile(image, manifest, scan, self.config.allowlist_for(family))
            self.store.save(record)
            outcome.unaccounted_count = len(record.elf_names)
            self._advance(outcome, ImageStatus.PERSISTED)
            _LOG.info("%s: found %d binaries installed not through a package manager",
                      image, outcome.unaccounted_count)
        except ProbeFailure as exc:
            self._skip(outcome, str(exc))
        except BinfinderError as exc:
            self._fail(outcome, exc)
            _LOG.error("%s", exc)
            if exc.__cause__ is not None:
                _LOG.debug("%s: caused by %s", image, exc.__cause__)
        except Exception as exc:
            self._fail(outcome, exc)
            _LOG.exception("%s: unexpected error", image)
        finally:
            outcome.elapsed = time.monotonic() - start
        return outcome

    # ──────────────────────────────────────────────────────────────── helpers

    def _classify(self, image: str) -> OSFamily:
        if self.config.pull_images:
            try:
                self.executor.pull(image)
            except ExecutionFailure as exc:
                raise ProbeFailure(image, "error pulling image") from exc
        return self.classifier.classify(image)

    @staticmethod
    def _advance(outcome: ImageOutcome, status: ImageStatus) -> None:
        _LOG.debug("%s: %s -> %s", outcome.image, outcome.status.value, status.value)
        outcome.status = status

    def _skip(self, outcome: ImageOutcome, reason: str) -> None:
        self._advance(outcome, ImageStatus.SKIPPED)
        outcome.error = reason
        _LOG.info("%s: skipping, %s", outcome.image, reason)

    def _fail(self, outcome: ImageOutcome, exc: Exception) -> None:
        self._advance(outcome, ImageStatus.FAILED)
        outcome.error = str(exc)
