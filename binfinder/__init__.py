"""binfinder - find executables in container images that no package manager owns."""

__version__ = "0.3.0"
