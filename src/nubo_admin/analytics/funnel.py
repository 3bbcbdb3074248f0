"""
Conversion funnel over the user lifecycle.

Each stage counts its own population against the full dataset. Stages are
not intersected with the previous one, so a later stage may be larger than
an earlier stage and is reported as such.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Sequence

from .dataset import AnalyticsDataset, distinct_in_order
from .models import FunnelStage

logger = logging.getLogger(__name__)

MATCH_WORKFLOW = "match_workflow"
SPECIFIC_WORKFLOWS = ("sisu_workflow", "prouni_workflow", "fies_workflow")


@dataclass(frozen=True)
class FunnelStageDefinition:
    name: str
    description: str
    population: Callable[[AnalyticsDataset], Sequence[str]]


DEFAULT_FUNNEL: Sequence[FunnelStageDefinition] = (
    FunnelStageDefinition(
        "Cadastrados",
        "Total de usuários na tabela user_profiles",
        lambda dataset: dataset.profile_ids(),
    ),
    FunnelStageDefinition(
        "Ativação",
        "Usuários que enviaram ao menos 1 mensagem (registro em chat_messages)",
        lambda dataset: dataset.message_user_ids(),
    ),
    FunnelStageDefinition(
        "Onboarding Completo",
        "Usuários com onboarding_completed = true na tabela user_profiles",
        lambda dataset: dataset.onboarded_user_ids(),
    ),
    FunnelStageDefinition(
        "Preferências Definidas",
        "Usuários únicos com registro em user_preferences",
        lambda dataset: dataset.preference_user_ids(),
    ),
    FunnelStageDefinition(
        "Match Iniciado",
        "Usuários únicos que iniciaram o workflow de match (workflow = match_workflow em chat_messages)",
        lambda dataset: dataset.message_user_ids(workflows=[MATCH_WORKFLOW]),
    ),
    FunnelStageDefinition(
        "Match Realizado",
        "Usuários que receberam resultado do match (workflow_data diferente de {} em user_preferences)",
        lambda dataset: dataset.matched_user_ids(),
    ),
    FunnelStageDefinition(
        "Salvaram Favoritos",
        "Usuários únicos que salvaram ao menos 1 favorito na tabela user_favorites",
        lambda dataset: dataset.favorite_user_ids(),
    ),
    FunnelStageDefinition(
        "Fluxo Específico",
        "Usuários que entraram em SISU, ProUni ou FIES workflow "
        "(workflow in sisu_workflow, prouni_workflow, fies_workflow)",
        lambda dataset: dataset.message_user_ids(workflows=SPECIFIC_WORKFLOWS),
    ),
)


def build_funnel(
    dataset: AnalyticsDataset,
    definitions: Sequence[FunnelStageDefinition] = DEFAULT_FUNNEL,
    include_details: bool = False,
) -> List[FunnelStage]:
    """
    Return one :class:`FunnelStage` per definition, in definition order.

    ``include_details`` attaches the matching user ids and their profile
    details to every stage for drill-down screens.
    """

    stages: List[FunnelStage] = []
    for definition in definitions:
        user_ids = distinct_in_order(definition.population(dataset))
        stage = FunnelStage(name=definition.name, count=len(user_ids), description=definition.description)
        if include_details:
            stage = replace(stage, user_ids=tuple(user_ids), users=tuple(dataset.funnel_users(user_ids)))
        stages.append(stage)

    logger.info("Funnel computed: %s", [(stage.name, stage.count) for stage in stages])
    return stages
