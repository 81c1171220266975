"""Shared fixtures: an in-memory stand-in for the docker execution port."""

from __future__ import annotations

import threading

import pytest

from binfinder.config import Config
from binfinder.errors import ExecutionFailure
from binfinder.executor import CommandTemplate

FAIL = object()


class FakeExecutor:
    """Maps (template, args) to canned output and records every call."""

    def __init__(self) -> None:
        self.responses: dict[tuple, object] = {}
        self.calls: list[tuple] = []
        self.pulls: list[str] = []
        self.pull_failures: set[str] = set()
        self.aborted = False
        self._lock = threading.Lock()

    def on(self, template: CommandTemplate, *args: str, output: object = "",
           image: str | None = None) -> "FakeExecutor":
        self.responses[(image, template, tuple(args))] = output
        return self

    def execute(self, image: str, template: CommandTemplate, *args: str) -> str:
        with self._lock:
            self.calls.append((image, template, tuple(args)))
        if self.aborted:
            raise ExecutionFailure(image, [template.name, *args], reason="run aborted")
        for key in ((image, template, tuple(args)), (None, template, tuple(args))):
            if key in self.responses:
                value = self.responses[key]
                if value is FAIL:
                    break
                if callable(value):
                    return value()
                return value
        raise ExecutionFailure(image, [template.name, *args], 1, "No such file or directory")

    def pull(self, image: str) -> None:
        with self._lock:
            self.pulls.append(image)
        if image in self.pull_failures:
            raise ExecutionFailure(image, ["pull", image], 1, "manifest unknown")

    def abort(self) -> None:
        self.aborted = True

    def calls_for(self, image: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == image]


def sweep_output(paths_and_types: list[tuple[str, str]]) -> str:
    return "\n".join(f"{p}: {t}" for p, t in paths_and_types) + "\n"


ELF_EXEC = "ELF 64-bit LSB executable, x86-64, version 1 (SYSV), dynamically linked"
ELF_PIE = "ELF 64-bit LSB pie executable, x86-64, version 1 (SYSV), dynamically linked"
ELF_SHARED = "ELF 64-bit LSB shared object, x86-64, version 1 (SYSV), dynamically linked"


def setup_alpine(fake: FakeExecutor, image: str, packages: dict[str, list[str]],
                 executables: list[str]) -> None:
    installed = "".join(f"C:Q1abc=\nP:{name}\nV:1.0-r0\n\n" for name in packages)
    fake.on(CommandTemplate.OS_RELEASE, output='NAME="Alpine Linux"\nID=alpine\n', image=image)
    fake.on(CommandTemplate.APK_INSTALLED, output=installed, image=image)
    for name, files in packages.items():
        listing = f"{name}-1.0-r0 contains:\n" + "\n".join(files) + "\n\n"
        fake.on(CommandTemplate.APK_INFO, name, output=listing, image=image)
    fake.on(CommandTemplate.RUN_SCRIPT, "alpine",
            output=sweep_output([(p, ELF_PIE) for p in executables]), image=image)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(output_dir=str(tmp_path / "data"), pull_images=True)
