#!/usr/bin/env python3
"""
Install a compliance framework package from a JSON file or the bundled catalog.

Usage:
    python scripts/install_framework.py path/to/package.json
    python scripts/install_framework.py --catalog iso27001-2022
    python scripts/install_framework.py --list
    python scripts/install_framework.py package.json --validate-only

Idempotent: re-running with the same package updates in place, never duplicates.
Exit codes: 0 ok, 1 install failed (nothing written), 2 invalid package / usage.
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

# Ensure repo root is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.grc.config import load_settings  # noqa: E402
from app.grc.modules.framework_plugins.catalog import CatalogError, FrameworkCatalog  # noqa: E402
from app.grc.modules.framework_plugins.schema import FrameworkPackage, PackageValidationError, validate, validate_json  # noqa: E402
from app.grc.modules.framework_plugins.service import InstallError, install  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Install a compliance framework package.")
    p.add_argument("path", nargs="?", help="Package JSON file")
    p.add_argument("--catalog", metavar="PACKAGE_ID", help="Install a package from the catalog instead of a file")
    p.add_argument("--catalog-path", help="Catalog directory (default: FRAMEWORK_CATALOG_PATH)")
    p.add_argument("--list", action="store_true", help="List catalog packages and exit")
    p.add_argument("--validate-only", action="store_true", help="Validate the package without writing")
    p.add_argument("--retire-missing", action="store_true", help="Mark phases/requirements dropped by this package as retired")
    p.add_argument("--database-url", help="Database URL (default: DATABASE_URL)")
    return p


def _list_catalog(catalog: FrameworkCatalog) -> int:
    entries = catalog.list_entries()
    if not entries:
        print(f"No packages found in {catalog.root}")
        return 0
    for entry in entries:
        if entry.manifest is None:
            print(f"{entry.package_id:<24} INVALID  {entry.error.splitlines()[0] if entry.error else ''}")
        else:
            m = entry.manifest
            print(f"{entry.package_id:<24} {m.slug:<16} v{m.version:<10} {m.type.value:<10} {m.name}")
    return 0


def _load_package(args: argparse.Namespace, catalog: FrameworkCatalog) -> FrameworkPackage:
    if args.catalog:
        return validate(catalog.load(args.catalog))
    return validate_json(Path(args.path).read_bytes())


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = load_settings()
    catalog = FrameworkCatalog(root=Path(args.catalog_path or settings.framework_catalog_path))

    if args.list:
        return _list_catalog(catalog)
    if not args.path and not args.catalog:
        parser.print_usage(sys.stderr)
        print("error: a package file or --catalog PACKAGE_ID is required", file=sys.stderr)
        return 2

    try:
        pkg = _load_package(args, catalog)
    except (OSError, CatalogError) as e:
        print(f"Cannot read package: {e}", file=sys.stderr)
        return 2
    except PackageValidationError as e:
        print(str(e), file=sys.stderr)
        return 2

    print(
        f"Package {pkg.manifest.slug} v{pkg.manifest.version}: "
        f"{len(pkg.content.phases)} phases, {len(pkg.content.requirements)} requirements",
        flush=True,
    )
    if args.validate_only:
        print("Validation OK")
        return 0

    db_url = (args.database_url or os.environ.get("DATABASE_URL") or settings.database_url).strip()
    retire_missing = args.retire_missing or settings.framework_retire_missing
    try:
        with script_session(db_url) as s:
            result = install(s, pkg, source="cli", retire_missing=retire_missing)
    except InstallError as e:
        print(f"Install failed: {e}", file=sys.stderr)
        return 1
    except SQLAlchemyError as e:
        # commit failed after a successful install; script_session rolled back
        print(f"Install failed: import of '{pkg.manifest.slug}' was not committed, no changes were applied ({e.__class__.__name__}).", file=sys.stderr)
        return 1

    print(json.dumps(result.to_dict(), indent=2))
    for w in result.warnings:
        print(f"WARNING: {w.message}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
