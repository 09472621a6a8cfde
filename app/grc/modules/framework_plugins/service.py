"""
Framework package synchronization.

install() merges a validated FrameworkPackage into the framework tables:

1. Framework upsert keyed by manifest.slug (short_code)
2. Phase upsert keyed by (framework_id, name), building the phase map
3. Requirement upsert keyed by (framework_id, identifier); phaseName resolved
   through the phase map (unknown names become warnings, not errors)
4. Policy/risk sections handed to an ExtensionSections applier (no-op by default)

The whole install is one unit of work on the caller's session: on failure the
session is rolled back and InstallError is raised, so nothing is left behind.
The caller commits on success.

No lock is taken per slug. Two concurrent installs of the same slug race and
the last writer's attribute values win; the unique constraints on the natural
keys turn a would-be duplicate row into an InstallError for the loser.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from app.grc.audit import record_event
from app.grc.modules.framework_plugins.extensions import ExtensionSections, NoopExtensionSections
from app.grc.modules.framework_plugins.models import Framework, FrameworkInstallRun, Phase, Requirement

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.grc.models import User
    from app.grc.modules.framework_plugins.schema import FrameworkPackage, PackageManifest, PhaseSpec, RequirementSpec

logger = logging.getLogger(__name__)


class InstallError(RuntimeError):
    """The install did not complete. The session was rolled back; no changes were applied."""

    def __init__(self, slug: str, message: str):
        self.slug = slug
        super().__init__(message)


@dataclass(frozen=True)
class InstallWarning:
    code: str  # e.g. "unknown_phase"
    message: str
    requirement: str | None = None
    phase_name: str | None = None


@dataclass
class SyncCounts:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    retired: int = 0


@dataclass
class InstallResult:
    framework_id: int
    slug: str
    version: str
    framework_created: bool
    phases: SyncCounts
    requirements: SyncCounts
    warnings: list[InstallWarning] = field(default_factory=list)
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _apply_changes(obj: Any, values: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Set only the attributes that differ. Returns {field: {"old": ..., "new": ...}}."""
    changes: dict[str, dict[str, Any]] = {}
    for key, new in values.items():
        old = getattr(obj, key)
        if old != new:
            changes[key] = {"old": old, "new": new}
            setattr(obj, key, new)
    return changes


def _upsert_framework(s: "Session", manifest: "PackageManifest", now: datetime) -> tuple[Framework, bool]:
    values = {
        "name": manifest.name,
        "version": manifest.version,
        "description": manifest.description,
        "type": manifest.type.value,
    }
    fw = s.query(Framework).filter(Framework.short_code == manifest.slug).one_or_none()
    if fw is None:
        fw = Framework(short_code=manifest.slug, created_at=now, updated_at=now, **values)
        s.add(fw)
        s.flush()
        return fw, True

    changes = _apply_changes(fw, values)
    fw.updated_at = now
    if changes:
        logger.info("Framework %s updated fields: %s", manifest.slug, ", ".join(sorted(changes)))
    return fw, False


def _sync_phases(
    s: "Session",
    fw: Framework,
    phases: list["PhaseSpec"],
    *,
    now: datetime,
    counts: SyncCounts,
    retire_missing: bool,
) -> dict[str, int]:
    """Upsert phases in package order and return the phase map (name -> phase id)."""
    existing = {p.name: p for p in s.query(Phase).filter(Phase.framework_id == fw.id).all()}
    declared: list[str] = []

    for spec in phases:
        values = {"description": spec.description, "order": spec.order, "retired_at": None}
        phase = existing.get(spec.name)
        if phase is None:
            phase = Phase(name=spec.name, created_at=now, updated_at=now, **values)
            fw.phases.append(phase)
            existing[spec.name] = phase
            counts.created += 1
        elif _apply_changes(phase, values):
            phase.updated_at = now
            counts.updated += 1
        else:
            counts.unchanged += 1
        declared.append(spec.name)

    if retire_missing:
        for name, phase in existing.items():
            if name not in declared and phase.retired_at is None:
                phase.retired_at = now
                phase.updated_at = now
                counts.retired += 1

    # ids are needed for the phase map
    s.flush()
    return {name: existing[name].id for name in declared}


def _resolve_phase_id(
    spec: "RequirementSpec", phase_map: dict[str, int], slug: str, warnings: list[InstallWarning]
) -> int | None:
    if spec.phase_name is None:
        return None
    phase_id = phase_map.get(spec.phase_name)
    if phase_id is None:
        logger.warning(
            "Framework %s: requirement %s references unknown phase %r; imported without a phase",
            slug,
            spec.identifier,
            spec.phase_name,
        )
        warnings.append(
            InstallWarning(
                code="unknown_phase",
                message=f"Requirement {spec.identifier} references unknown phase '{spec.phase_name}'.",
                requirement=spec.identifier,
                phase_name=spec.phase_name,
            )
        )
    return phase_id


def _sync_requirements(
    s: "Session",
    fw: Framework,
    requirements: list["RequirementSpec"],
    phase_map: dict[str, int],
    *,
    now: datetime,
    counts: SyncCounts,
    warnings: list[InstallWarning],
    retire_missing: bool,
) -> None:
    existing = {r.identifier: r for r in s.query(Requirement).filter(Requirement.framework_id == fw.id).all()}
    declared: set[str] = set()

    for spec in requirements:
        values = {
            "title": spec.title,
            "description": spec.description,
            "guidance": spec.guidance,
            "mapping_tags": list(spec.mapping_tags),
            "phase_id": _resolve_phase_id(spec, phase_map, fw.short_code, warnings),
            "retired_at": None,
        }
        req = existing.get(spec.identifier)
        if req is None:
            req = Requirement(identifier=spec.identifier, created_at=now, updated_at=now, **values)
            fw.requirements.append(req)
            existing[spec.identifier] = req
            counts.created += 1
        elif _apply_changes(req, values):
            req.updated_at = now
            counts.updated += 1
        else:
            counts.unchanged += 1
        declared.add(spec.identifier)

    if retire_missing:
        for identifier, req in existing.items():
            if identifier not in declared and req.retired_at is None:
                req.retired_at = now
                req.updated_at = now
                counts.retired += 1

    s.flush()


def _record_run(
    s: "Session",
    result: InstallResult,
    *,
    user: "User | None",
    source: str,
    duration_ms: int,
) -> FrameworkInstallRun:
    run = FrameworkInstallRun(
        framework_id=result.framework_id,
        slug=result.slug,
        version=result.version,
        source=source,
        framework_created=result.framework_created,
        phases_created=result.phases.created,
        phases_updated=result.phases.updated,
        phases_retired=result.phases.retired,
        requirements_created=result.requirements.created,
        requirements_updated=result.requirements.updated,
        requirements_retired=result.requirements.retired,
        warnings_count=len(result.warnings),
        duration_ms=duration_ms,
        warnings_json=json.dumps([asdict(w) for w in result.warnings]) if result.warnings else None,
        installed_by_user_id=user.id if user else None,
    )
    s.add(run)
    return run


def install(
    s: "Session",
    pkg: "FrameworkPackage",
    *,
    user: "User | None" = None,
    source: str = "api",
    retire_missing: bool = False,
    extensions: ExtensionSections | None = None,
) -> InstallResult:
    """
    Merge a validated package into the framework tables.

    Re-installing the same package is a no-op apart from timestamps. Raises
    InstallError (after rolling back ``s``) if any store operation fails.
    """
    manifest = pkg.manifest
    extensions = extensions or NoopExtensionSections()
    started = time.monotonic()
    now = datetime.utcnow()
    phase_counts = SyncCounts()
    req_counts = SyncCounts()
    warnings: list[InstallWarning] = []

    logger.info(
        "Installing framework package slug=%s version=%s (%d phases, %d requirements)",
        manifest.slug,
        manifest.version,
        len(pkg.content.phases),
        len(pkg.content.requirements),
    )

    try:
        fw, created = _upsert_framework(s, manifest, now)
        phase_map = _sync_phases(
            s, fw, pkg.content.phases, now=now, counts=phase_counts, retire_missing=retire_missing
        )
        _sync_requirements(
            s,
            fw,
            pkg.content.requirements,
            phase_map,
            now=now,
            counts=req_counts,
            warnings=warnings,
            retire_missing=retire_missing,
        )
        extensions.apply_policies(s, fw, pkg.content.policies)
        extensions.apply_risks(s, fw, pkg.content.risks)

        result = InstallResult(
            framework_id=fw.id,
            slug=manifest.slug,
            version=manifest.version,
            framework_created=created,
            phases=phase_counts,
            requirements=req_counts,
            warnings=warnings,
        )
        duration_ms = int((time.monotonic() - started) * 1000)
        _record_run(s, result, user=user, source=source, duration_ms=duration_ms)
        record_event(
            s,
            actor=user,
            action="framework.install",
            entity_type="Framework",
            entity_id=str(fw.id),
            metadata={
                "slug": manifest.slug,
                "version": manifest.version,
                "source": source,
                "created": created,
                "phases": asdict(phase_counts),
                "requirements": asdict(req_counts),
                "warnings": len(warnings),
            },
        )
        s.flush()
    except SQLAlchemyError as exc:
        s.rollback()
        logger.exception("Framework install failed slug=%s; rolled back", manifest.slug)
        raise InstallError(
            manifest.slug, f"Import of '{manifest.slug}' failed, no changes were applied ({exc.__class__.__name__})."
        ) from exc
    except Exception:
        s.rollback()
        logger.exception("Framework install aborted slug=%s; rolled back", manifest.slug)
        raise

    logger.info(
        "Installed framework %s id=%s created=%s phases=%s requirements=%s warnings=%d (%dms)",
        manifest.slug,
        fw.id,
        created,
        asdict(phase_counts),
        asdict(req_counts),
        len(warnings),
        duration_ms,
    )
    return result


def get_framework_by_slug(s: "Session", slug: str) -> Framework | None:
    return s.query(Framework).filter(Framework.short_code == slug).one_or_none()


def installed_versions(s: "Session") -> dict[str, str | None]:
    """slug -> installed version, for catalog listings."""
    rows = s.query(Framework.short_code, Framework.version).all()
    return {slug: version for slug, version in rows}


def delete_framework(s: "Session", fw: Framework, *, user: "User | None" = None, reason: str | None = None) -> None:
    """Delete a framework together with its phases and requirements."""
    metadata = {
        "slug": fw.short_code,
        "version": fw.version,
        "phases": len(fw.phases),
        "requirements": len(fw.requirements),
    }
    fw_id = fw.id
    s.delete(fw)
    s.flush()
    record_event(
        s,
        actor=user,
        action="framework.delete",
        entity_type="Framework",
        entity_id=str(fw_id),
        reason=reason,
        metadata=metadata,
    )
    logger.info("Deleted framework %s id=%s (%d phases, %d requirements)", metadata["slug"], fw_id, metadata["phases"], metadata["requirements"])
