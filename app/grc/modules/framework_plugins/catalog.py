from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from app.grc.config import DEFAULT_CATALOG_PATH
from app.grc.modules.framework_plugins.schema import (
    ROOT_PATH,
    FieldError,
    PackageManifest,
    PackageValidationError,
    parse_json,
    validate,
)

logger = logging.getLogger(__name__)


class CatalogError(LookupError):
    pass


@dataclass(frozen=True)
class CatalogEntry:
    package_id: str
    path: Path
    manifest: PackageManifest | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.manifest is not None


@dataclass(frozen=True)
class FrameworkCatalog:
    """
    Directory of bundled framework packages (``*.json``).

    The catalog only reads files and hands raw JSON to callers; validation and
    install stay with the caller so uploads and catalog installs share one path.
    """

    root: Path

    def _files(self) -> list[Path]:
        if not self.root.is_dir():
            logger.warning("Framework catalog directory not found: %s", self.root)
            return []
        return sorted(self.root.glob("*.json"))

    def _read(self, path: Path) -> Any:
        """Raw JSON of one file. Unreadable or malformed files raise PackageValidationError."""
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PackageValidationError(
                [FieldError(ROOT_PATH, f"Cannot read package file: {e.strerror or e}", "readable file", "unreadable file")]
            ) from None
        return parse_json(data)

    def list_entries(self) -> list[CatalogEntry]:
        """Every package file with its manifest, or the reason it cannot be installed."""
        entries: list[CatalogEntry] = []
        for path in self._files():
            try:
                pkg = validate(self._read(path))
            except PackageValidationError as e:
                logger.error("Catalog package %s failed validation: %s", path.name, e)
                error = "; ".join(str(fe) for fe in e.errors)
                entries.append(CatalogEntry(package_id=path.stem, path=path, error=error))
                continue
            entries.append(CatalogEntry(package_id=pkg.manifest.id, path=path, manifest=pkg.manifest))
        return entries

    def load(self, package_id: str) -> Any:
        """
        Raw JSON of one package, looked up by file stem or manifest id.

        Raises CatalogError for an unknown id and PackageValidationError when the
        file cannot be read or parsed.
        """
        package_id = (package_id or "").strip()
        if not package_id:
            raise CatalogError("Package id is required.")
        for path in self._files():
            if path.stem == package_id:
                return self._read(path)
        for entry in self.list_entries():
            if entry.valid and entry.package_id == package_id:
                return self._read(entry.path)
        raise CatalogError(f"Framework package '{package_id}' not found in catalog.")


def catalog_from_config(config: dict) -> FrameworkCatalog:
    raw = str(config.get("FRAMEWORK_CATALOG_PATH") or "").strip()
    return FrameworkCatalog(root=Path(raw).expanduser() if raw else DEFAULT_CATALOG_PATH)
