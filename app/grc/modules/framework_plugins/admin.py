from __future__ import annotations

import json

from flask import Blueprint, abort, current_app, g, request
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.utils import secure_filename

from app.grc.db import db_session
from app.grc.models import User
from app.grc.modules.framework_plugins.catalog import CatalogError, catalog_from_config
from app.grc.modules.framework_plugins.models import Framework, FrameworkInstallRun, Phase, Requirement
from app.grc.modules.framework_plugins.schema import (
    ROOT_PATH,
    FieldError,
    FrameworkPackage,
    PackageValidationError,
    validate,
    validate_json,
)
from app.grc.modules.framework_plugins.service import InstallError, InstallResult, delete_framework, install, installed_versions
from app.grc.rbac import require_permission

bp = Blueprint("framework_plugins", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_framework_or_404(s: Session, framework_id: int) -> Framework:
    fw = s.get(Framework, framework_id)
    if not fw:
        abort(404)
    return fw


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def _serialize_framework(fw: Framework, *, phase_count: int = 0, requirement_count: int = 0) -> dict:
    return {
        "id": fw.id,
        "slug": fw.short_code,
        "name": fw.name,
        "version": fw.version,
        "description": fw.description,
        "type": fw.type,
        "phase_count": phase_count,
        "requirement_count": requirement_count,
        "created_at": _iso(fw.created_at),
        "updated_at": _iso(fw.updated_at),
    }


def _serialize_phase(p: Phase) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "order": p.order,
        "retired_at": _iso(p.retired_at),
    }


def _serialize_requirement(r: Requirement) -> dict:
    return {
        "id": r.id,
        "identifier": r.identifier,
        "title": r.title,
        "description": r.description,
        "guidance": r.guidance,
        "mapping_tags": r.mapping_tags or [],
        "phase_id": r.phase_id,
        "retired_at": _iso(r.retired_at),
    }


def _serialize_run(run: FrameworkInstallRun) -> dict:
    return {
        "id": run.id,
        "ran_at": _iso(run.ran_at),
        "framework_id": run.framework_id,
        "slug": run.slug,
        "version": run.version,
        "source": run.source,
        "framework_created": run.framework_created,
        "phases": {"created": run.phases_created, "updated": run.phases_updated, "retired": run.phases_retired},
        "requirements": {
            "created": run.requirements_created,
            "updated": run.requirements_updated,
            "retired": run.requirements_retired,
        },
        "warnings": json.loads(run.warnings_json) if run.warnings_json else [],
        "duration_ms": run.duration_ms,
    }


def _package_from_request() -> FrameworkPackage:
    """Uploaded package: multipart ``file`` field or a raw JSON request body."""
    f = request.files.get("file")
    if f is not None:
        filename = secure_filename(f.filename or "") or "package.json"
        if not filename.lower().endswith(".json"):
            raise PackageValidationError(
                [FieldError(ROOT_PATH, f"Unsupported file type: {filename}", "JSON file (.json)", "other file")]
            )
        current_app.logger.info("Framework package upload: %s", filename)
        return validate_json(f.read())
    body = request.get_data(cache=True)
    if not body:
        raise PackageValidationError([FieldError(ROOT_PATH, "No package provided.", "JSON document", "nothing")])
    return validate_json(body)


def _install_and_commit(s: Session, pkg: FrameworkPackage, *, source: str) -> InstallResult:
    result = install(
        s,
        pkg,
        user=_current_user(),
        source=source,
        retire_missing=bool(current_app.config.get("FRAMEWORK_RETIRE_MISSING")),
    )
    try:
        s.commit()
    except SQLAlchemyError as exc:
        s.rollback()
        current_app.logger.exception("Commit failed for framework install slug=%s", pkg.manifest.slug)
        raise InstallError(pkg.manifest.slug, f"Import of '{pkg.manifest.slug}' failed, no changes were applied.") from exc
    return result


@bp.errorhandler(PackageValidationError)
def _package_invalid(e: PackageValidationError):
    return e.to_dict(), 400


@bp.errorhandler(InstallError)
def _install_failed(e: InstallError):
    return {"error": "Import failed, no changes were applied.", "slug": e.slug}, 500


@bp.errorhandler(CatalogError)
def _catalog_miss(e: CatalogError):
    return {"error": str(e)}, 404


@bp.get("/frameworks")
@require_permission("frameworks.view")
def frameworks_index():
    s = db_session()
    phase_counts = dict(s.query(Phase.framework_id, func.count(Phase.id)).group_by(Phase.framework_id).all())
    req_counts = dict(
        s.query(Requirement.framework_id, func.count(Requirement.id)).group_by(Requirement.framework_id).all()
    )
    frameworks = s.query(Framework).order_by(Framework.name.asc(), Framework.id.asc()).all()
    return {
        "frameworks": [
            _serialize_framework(
                fw,
                phase_count=phase_counts.get(fw.id, 0),
                requirement_count=req_counts.get(fw.id, 0),
            )
            for fw in frameworks
        ]
    }


@bp.get("/frameworks/<int:framework_id>")
@require_permission("frameworks.view")
def framework_detail(framework_id: int):
    s = db_session()
    fw = _get_framework_or_404(s, framework_id)
    data = _serialize_framework(fw, phase_count=len(fw.phases), requirement_count=len(fw.requirements))
    data["phases"] = [_serialize_phase(p) for p in fw.phases]
    data["requirements"] = [_serialize_requirement(r) for r in fw.requirements]
    return data


@bp.delete("/frameworks/<int:framework_id>")
@require_permission("frameworks.delete")
def framework_delete(framework_id: int):
    s = db_session()
    fw = _get_framework_or_404(s, framework_id)
    payload = request.get_json(silent=True) or {}
    reason = (payload.get("reason") or request.args.get("reason") or "").strip() or None
    delete_framework(s, fw, user=_current_user(), reason=reason)
    s.commit()
    return {"ok": True, "deleted": framework_id}


@bp.get("/frameworks/catalog")
@require_permission("frameworks.view")
def catalog_index():
    s = db_session()
    installed = installed_versions(s)
    entries = []
    for entry in catalog_from_config(current_app.config).list_entries():
        item: dict = {"package_id": entry.package_id, "valid": entry.valid, "error": entry.error}
        if entry.manifest is not None:
            m = entry.manifest
            current = installed.get(m.slug)
            item.update(
                {
                    "slug": m.slug,
                    "name": m.name,
                    "version": m.version,
                    "author": m.author,
                    "description": m.description,
                    "type": m.type.value,
                    "tags": m.tags,
                    "icon": m.icon,
                    "installed": m.slug in installed,
                    "installed_version": current,
                    "update_available": m.slug in installed and current != m.version,
                }
            )
        entries.append(item)
    return {"packages": entries}


@bp.post("/frameworks/catalog/<package_id>/install")
@require_permission("frameworks.install")
def catalog_install(package_id: str):
    s = db_session()
    raw = catalog_from_config(current_app.config).load(package_id)
    pkg = validate(raw)
    result = _install_and_commit(s, pkg, source="catalog")
    return result.to_dict()


@bp.post("/frameworks/validate")
@require_permission("frameworks.install")
def package_validate():
    pkg = _package_from_request()
    return {
        "ok": True,
        "slug": pkg.manifest.slug,
        "version": pkg.manifest.version,
        "phases": len(pkg.content.phases),
        "requirements": len(pkg.content.requirements),
        "policies": len(pkg.content.policies),
        "risks": len(pkg.content.risks),
    }


@bp.post("/frameworks/upload")
@require_permission("frameworks.install")
def package_upload():
    s = db_session()
    pkg = _package_from_request()
    result = _install_and_commit(s, pkg, source="upload")
    return result.to_dict(), 201 if result.framework_created else 200


@bp.get("/frameworks/runs")
@require_permission("frameworks.view")
def install_runs():
    s = db_session()
    try:
        limit = max(1, min(int(request.args.get("limit", 20)), 200))
    except ValueError:
        limit = 20
    runs = (
        s.query(FrameworkInstallRun)
        .order_by(FrameworkInstallRun.ran_at.desc(), FrameworkInstallRun.id.desc())
        .limit(limit)
        .all()
    )
    return {"runs": [_serialize_run(r) for r in runs]}
