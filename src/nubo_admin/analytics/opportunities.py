"""
Opportunity types screen: what students prefer against what is on offer.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .models import OpportunityTypes, UserPreference, VacancyRecord
from .rankings import program_display_name, rank_keys, rank_weighted

logger = logging.getLogger(__name__)

UNSPECIFIED_MODALITY = "Não especificado"
MODALITY_DISPLAY_LIMIT = 6


def build_opportunity_types(
    preferences: Iterable[UserPreference],
    vacancies: Sequence[VacancyRecord],
    sisu_opportunities: int,
    prouni_opportunities: int,
) -> OpportunityTypes:
    """
    Program preference shares, idle seats by competition modality (top
    six, weighted by seats) and the number of SISU and ProUni offers.

    The idle seat total covers every modality, not only the ones shown.
    """

    programs = rank_keys(program_display_name(preference.program_preference) for preference in preferences)
    seats = [vacancy for vacancy in vacancies if vacancy.idle_seats > 0]
    by_modality = rank_weighted((vacancy.modality or UNSPECIFIED_MODALITY, vacancy.idle_seats) for vacancy in seats)
    result = OpportunityTypes(
        program_preferences=tuple(programs),
        idle_seats_total=sum(vacancy.idle_seats for vacancy in seats),
        idle_seats_by_modality=tuple(by_modality[:MODALITY_DISPLAY_LIMIT]),
        sisu_opportunities=sisu_opportunities,
        prouni_opportunities=prouni_opportunities,
    )
    logger.info(
        "Opportunity types: %s idle seats over %s modalities", result.idle_seats_total, len(by_modality)
    )
    return result
