"""
Version information for the settlement SDK.

Installed distributions report their metadata version; a source checkout
reads it from pyproject.toml next to the package.
"""
import importlib.metadata
import pathlib

import tomli

DISTRIBUTION_NAME = "settlement-sdk"
FALLBACK_VERSION = "0.1.0"


def _version_from_pyproject() -> str:
    pyproject = pathlib.Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        with pyproject.open("rb") as f:
            return tomli.load(f)["project"]["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        return FALLBACK_VERSION


try:
    __version__ = importlib.metadata.version(DISTRIBUTION_NAME)
except importlib.metadata.PackageNotFoundError:
    __version__ = _version_from_pyproject()
