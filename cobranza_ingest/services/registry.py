from __future__ import annotations

from dataclasses import dataclass

from ..models.data_source import DataSourceCode
from ..models.run import NoticeType
from .orchestrator import Step
from .steps import CleanupStep, ConvertWorkbooksStep, LoadStep, SanitizeStep, ValidateFilesStep

"""Notice type registry.

Every notice type maps to the data sources its run needs. Adding a notice
type means adding an entry here; a missing entry is caught by the registry
tests, not at run time.
"""

__all__ = [
    "NoticeDefinition",
    "NOTICE_DEFINITIONS",
    "definition_for",
    "build_pipeline",
]

D = DataSourceCode


@dataclass(frozen=True)
class NoticeDefinition:
    label: str
    data_sources: tuple[DataSourceCode, ...]


NOTICE_DEFINITIONS: dict[NoticeType, NoticeDefinition] = {
    NoticeType.CONSTITUCION_MORA_APORTANTES: NoticeDefinition(
        label="Constitución en mora - aportantes",
        data_sources=(D.BASCAR, D.PAGAPL, D.BAPRPO, D.PAGPLA, D.DATPOL, D.DETTRA),
    ),
    NoticeType.CONSTITUCION_MORA_INDEPENDIENTES: NoticeDefinition(
        label="Constitución en mora - independientes",
        data_sources=(D.DETTRA, D.PAGAPL, D.PAGLOG, D.BASACT, D.PAGPLA),
    ),
    NoticeType.AVISO_INCUMPLIMIENTO_APORTANTES: NoticeDefinition(
        label="Aviso de incumplimiento - aportantes",
        data_sources=(D.BASCAR, D.PAGAPL),
    ),
    NoticeType.AVISO_INCUMPLIMIENTO_ESTADOS_CUENTA: NoticeDefinition(
        label="Aviso de incumplimiento - estados de cuenta",
        data_sources=(D.BASCAR,),
    ),
}


def definition_for(notice_type: NoticeType) -> NoticeDefinition:
    try:
        return NOTICE_DEFINITIONS[notice_type]
    except KeyError as e:
        raise KeyError(f"no definition registered for notice type {notice_type!r}") from e


def build_pipeline(notice_type: NoticeType, strategy: str = "resilient") -> list[Step]:
    """validate -> convert -> sanitize -> load -> cleanup."""
    definition = definition_for(notice_type)
    return [
        ValidateFilesStep(definition.data_sources),
        ConvertWorkbooksStep(),
        SanitizeStep(),
        LoadStep(strategy),
        CleanupStep(),
    ]
