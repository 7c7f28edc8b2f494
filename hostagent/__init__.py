"""hostagent: per-host process agent. Runs commands, relays their output."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("hostagent")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
