"""Manifest loading.

This module loads a package manifest from a YAML or JSON file and pairs it
with the package directory it describes.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ybuild.manifest.schema import Manifest


class ManifestError(Exception):
    """Raised when a manifest cannot be read or fails validation."""

    def __init__(self, message: str, path: Path | None = None, code: str = "manifest_error") -> None:
        super().__init__(message)
        self.path = path
        self.code = code


@dataclass(frozen=True)
class Package:
    """A package directory and its manifest.

    Attributes:
        name: Package name, used for build dirs and container names.
        path: Package directory on the host.
        manifest: Parsed manifest.
    """

    name: str
    path: Path
    manifest: Manifest


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_manifest(path: Path) -> Manifest:
    """Load and validate a manifest file.

    The format is chosen from the file extension; anything other than
    '.json' is read as YAML.

    Args:
        path: Path to the manifest file.

    Returns:
        Validated Manifest.

    Raises:
        ManifestError: If the file is missing, unparsable or invalid.
    """
    try:
        data = load_json(path) if path.suffix.lower() == ".json" else load_yaml(path)
    except FileNotFoundError as e:
        raise ManifestError(f"manifest not found: {path}", path, code="not_found") from e
    except (yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ManifestError(f"cannot parse {path}: {e}", path, code="parse_error") from e

    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"invalid manifest {path}:\n{e}", path, code="validation_error") from e


def load_package(package_dir: Path, manifest_file: str) -> Package:
    """Load the package rooted at a directory.

    Args:
        package_dir: Package directory.
        manifest_file: Manifest file name inside the directory.

    Returns:
        Package with resolved absolute path.

    Raises:
        ManifestError: If the manifest cannot be loaded.
    """
    package_dir = package_dir.resolve()
    manifest = load_manifest(package_dir / manifest_file)
    return Package(
        name=manifest.package or package_dir.name,
        path=package_dir,
        manifest=manifest,
    )


__all__ = ["ManifestError", "Package", "load_json", "load_manifest", "load_package", "load_yaml"]
