from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.grc.modules.framework_plugins.models import Framework
    from app.grc.modules.framework_plugins.schema import PolicySpec, RiskSpec

logger = logging.getLogger(__name__)


class ExtensionSections:
    """
    Receives the optional package sections that have no framework table of their own.

    Called inside the install unit of work, after requirements are synchronized.
    Implementations must only write through ``s``; raising aborts the whole install.
    """

    def apply_policies(self, s: "Session", framework: "Framework", policies: list["PolicySpec"]) -> None:
        raise NotImplementedError

    def apply_risks(self, s: "Session", framework: "Framework", risks: list["RiskSpec"]) -> None:
        raise NotImplementedError


class NoopExtensionSections(ExtensionSections):
    """Validated but not persisted: policy templates and risk scenarios have no store yet."""

    def apply_policies(self, s: "Session", framework: "Framework", policies: list["PolicySpec"]) -> None:
        if policies:
            logger.info("Framework %s: %d policy template(s) accepted, not persisted", framework.short_code, len(policies))

    def apply_risks(self, s: "Session", framework: "Framework", risks: list["RiskSpec"]) -> None:
        if risks:
            logger.info("Framework %s: %d risk scenario(s) accepted, not persisted", framework.short_code, len(risks))
