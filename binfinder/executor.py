"""Execution port: run one command inside a throwaway container of an image.

Everything above this module talks to the container runtime only through
``DockerExecutor.execute``; tests substitute a fake with the same method.

Each template is a ``docker`` argument list.  ``{image}`` is replaced by the
image reference and ``{0}``, ``{1}`` ... by the positional arguments given to
``execute``.  Templates that run a companion script bind-mount it from
``Config.scripts_dir`` into ``/binfinder/`` inside the container.
"""
import logging
import os
import subprocess
import threading
from enum import Enum
from typing import Optional

from .config import Config
from .errors import ExecutionFailure

_LOG = logging.getLogger(__name__)

_RUN = ("run", "-u", "root", "--rm")

# Mount point for companion scripts; contains the default tooling marker
SCRIPT_MOUNT = "/binfinder"


class CommandTemplate(Enum):
    OS_RELEASE = _RUN + ("--entrypoint", "cat", "{image}", "/etc/os-release")
    CENTOS_RELEASE = _RUN + ("--entrypoint", "cat", "{image}", "/etc/centos-release")
    DPKG_LIST = _RUN + ("--entrypoint", "ls", "{image}", "/var/lib/dpkg/info/")
    DPKG_READ = _RUN + ("--entrypoint", "cat", "{image}", "/var/lib/dpkg/info/{0}")
    APK_INSTALLED = _RUN + ("--entrypoint", "cat", "{image}", "/lib/apk/db/installed")
    APK_INFO = _RUN + ("--entrypoint", "apk", "{image}", "info", "-L", "{0}")
    RUN_SCRIPT = _RUN + (
        "-v", "{scripts_dir}/{0}.sh:" + SCRIPT_MOUNT + "/{0}.sh:ro",
        "--entrypoint", "sh", "{image}", SCRIPT_MOUNT + "/{0}.sh",
    )


class DockerExecutor:
    """Runs container commands through the local ``docker`` CLI."""

    def __init__(self, config: Optional[Config] = None, docker: str = "docker"):
        self.config = config or Config()
        self.docker = docker
        self._lock = threading.Lock()
        self._procs: set = set()
        self._aborted = threading.Event()

    # ──────────────────────────────────────────────────────── public entry point

    def render(self, image: str, template: CommandTemplate, *args: str) -> list[str]:
        scripts_dir = os.path.abspath(self.config.scripts_dir)
        return [
            tok.format(*args, image=image, scripts_dir=scripts_dir)
            for tok in template.value
        ]

    def execute(self, image: str, template: CommandTemplate, *args: str) -> str:
        """Run ``template`` against ``image`` and return its stdout."""
        cmd = self.render(image, template, *args)
        stdout, _ = self._run(image, cmd)
        return stdout

    def pull(self, image: str) -> None:
        _LOG.info("%s: pulling image", image)
        self._run(image, ["pull", image])

    def login(self, registry: str, user: str, password: str) -> None:
        if not password:
            raise ExecutionFailure(registry or "docker.io", ["login"],
                                   reason="registry user given without a password")
        cmd = ["login", "--username", user, "--password-stdin"]
        if registry:
            cmd.append(registry)
        self._run(registry or "docker.io", cmd, stdin=password)

    def is_daemon_running(self) -> bool:
        try:
            self._run("docker", ["info"], timeout=15)
        except ExecutionFailure as exc:
            _LOG.debug("docker info failed: %s", exc)
            return False
        return True

    def abort(self) -> None:
        """Kill every in-flight container run and refuse new ones."""
        self._aborted.set()
        with self._lock:
            procs = list(self._procs)
        for proc in procs:
            try:
                proc.kill()
            except OSError:
                pass
        if procs:
            _LOG.warning("aborted %d in-flight container command(s)", len(procs))

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    # ──────────────────────────────────────────────────────────────── helpers

    def _run(self, image: str, args: list, timeout: Optional[float] = None,
             stdin: Optional[str] = None) -> tuple[str, str]:
        """Run ``docker <args>``; returns (stdout, stderr) or raises ExecutionFailure."""
        cmd = [self.docker] + list(args)
        if self._aborted.is_set():
            raise ExecutionFailure(image, cmd, reason="run aborted")
        if timeout is None:
            timeout = self.config.timeout

        _LOG.debug("%s: exec %s", image, " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ExecutionFailure(image, cmd, reason=f"Not found: {cmd[0]}") from exc
        except OSError as exc:
            raise ExecutionFailure(image, cmd, reason=str(exc)) from exc

        with self._lock:
            self._procs.add(proc)
            # abort() may have run between the check above and the add
            if self._aborted.is_set():
                proc.kill()
        try:
            try:
                out, err = proc.communicate(
                    input=stdin.encode() if stdin is not None else None, timeout=timeout
                )
            except subprocess.TimeoutExpired as exc:
                proc.kill()
                proc.communicate()
                raise ExecutionFailure(image, cmd, timed_out=True) from exc
        finally:
            with self._lock:
                self._procs.discard(proc)

        stdout = out.decode("utf-8", errors="replace") if out else ""
        stderr = err.decode("utf-8", errors="replace") if err else ""
        if self._aborted.is_set():
            raise ExecutionFailure(image, cmd, proc.returncode, stderr, reason="run aborted")
        if proc.returncode != 0:
            raise ExecutionFailure(image, cmd, proc.returncode, stderr)
        return stdout, stderr
