from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Sequence

from .models import (
    NOT_AVAILABLE,
    AffiliateUser,
    InfluencerDashboardStats,
    InfluencerRecord,
    InfluencerStats,
    PartnerClick,
    PartnerRecord,
    PartnerStats,
    UserProfile,
)

logger = logging.getLogger(__name__)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _best_key(totals: Dict[str, int]) -> str:
    """
    Key with the strictly greatest total; the first one seen wins ties.
    Returns an empty string when nothing was counted.
    """

    best_key = ""
    best_total = 0
    for key, total in totals.items():
        if total > best_total:
            best_key, best_total = key, total
    return best_key


def compute_partner_stats(partners: Sequence[PartnerRecord], clicks: Iterable[PartnerClick]) -> PartnerStats:
    clicks_by_partner: Dict[str, int] = {}
    users = set()
    total_clicks = 0
    for click in clicks:
        clicks_by_partner[click.partner_id] = clicks_by_partner.get(click.partner_id, 0) + click.clicks
        total_clicks += click.clicks
        if click.user_id:
            users.add(click.user_id)

    names = {partner.id: partner.name for partner in partners}
    best_partner_id = _best_key(clicks_by_partner)
    stats = PartnerStats(
        total_partners=len(partners),
        total_clicks=total_clicks,
        best_partner_name=names.get(best_partner_id, NOT_AVAILABLE),
        unique_users=len(users),
        clicks_per_partner=_ratio(total_clicks, len(partners)),
        clicks_per_user=_ratio(total_clicks, len(users)),
    )
    logger.info("Partner stats: %s partners, %s clicks", stats.total_partners, stats.total_clicks)
    return stats


def affiliate_users(profiles: Iterable[UserProfile], code: str) -> List[AffiliateUser]:
    """
    Users whose signup was attributed to the referral ``code``.
    """

    return [
        AffiliateUser(
            id=profile.id,
            full_name=profile.full_name,
            phone=profile.phone,
            age=profile.age,
            city=profile.city,
            created_at=profile.created_at,
            last_sign_in_at=profile.last_sign_in_at,
        )
        for profile in profiles
        if profile.referral_code == code
    ]


def compute_influencer_stats(
    influencers: Sequence[InfluencerRecord], profiles: Iterable[UserProfile]
) -> List[InfluencerStats]:
    affiliates = Counter(profile.referral_code for profile in profiles if profile.referral_code)
    return [
        InfluencerStats(
            influencer_id=influencer.id,
            name=influencer.name,
            code=influencer.code,
            affiliate_count=affiliates.get(influencer.code, 0),
        )
        for influencer in influencers
    ]


def compute_influencer_dashboard(stats: Sequence[InfluencerStats]) -> InfluencerDashboardStats:
    totals = {entry.influencer_id: entry.affiliate_count for entry in stats}
    names = {entry.influencer_id: entry.name for entry in stats}
    total_affiliates = sum(totals.values())
    return InfluencerDashboardStats(
        total_affiliates=total_affiliates,
        best_influencer=names.get(_best_key(totals), NOT_AVAILABLE),
        avg_affiliates=_ratio(total_affiliates, len(stats)),
    )
