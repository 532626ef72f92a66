"""sidecar-terminator - stops sidecar containers once a Job pod's main work is done."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sidecar-terminator")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
