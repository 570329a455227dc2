# services/enrichment_service.py
from typing import Any, Dict, Optional

from variant_bridge.core.logging import get_logger
from variant_bridge.repositories.audience_repo import AudienceRepository

log = get_logger(__name__)

AUDIENCE_FLAGS = ("premium_subscriber", "high_value_customer", "at_risk_churn")

# Marks attribute maps built from what the caller sent rather than from the
# audience provider.
ATTRIBUTE_SOURCE_KEY = "_attribute_source"
CALLER_SOURCE = "browser"


def _tier(attributes: Dict[str, Any]) -> Optional[Any]:
    return attributes.get("subscription_tier") or attributes.get("subscriptionTier")


def _first_present(attributes: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = attributes.get(key)
        if value:
            return value
    return None


def attributes_from_caller(existing: Dict[str, Any]) -> Dict[str, Any]:
    """
    Derives the audience flags from caller-supplied attributes.

    Each flag is true if its explicit key, its camelCase alias, or the
    subscription tier says so. A "premium" tier marks both
    premium_subscriber and high_value_customer.
    """
    tier = _tier(existing)

    return {
        **existing,
        "premium_subscriber": bool(
            existing.get("premium_subscriber") or existing.get("isPremium") or tier == "premium"
        ),
        "high_value_customer": bool(
            existing.get("high_value_customer") or existing.get("isHighValue") or tier == "premium"
        ),
        "at_risk_churn": bool(
            existing.get("at_risk_churn") or existing.get("isAtRisk") or tier == "free"
        ),
        "subscription_tier": _first_present(existing, "subscription_tier", "subscriptionTier", "tier"),
        "user_segment": _first_present(existing, "user_segment", "segment"),
        "country": existing.get("country"),
        "device_type": existing.get("device_type"),
        ATTRIBUTE_SOURCE_KEY: CALLER_SOURCE,
    }


def attributes_from_audiences(
    existing: Dict[str, Any], provider_attributes: Dict[str, Any], audiences: Dict[str, Any]
) -> Dict[str, Any]:
    enriched = {**existing, **provider_attributes}
    for flag in AUDIENCE_FLAGS:
        enriched[flag] = audiences.get(flag) is True
    return enriched


def drop_empty(attributes: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in attributes.items() if value is not None}


class AttributeEnricher:
    def __init__(self, audience_repo: AudienceRepository):
        self.audience_repo = audience_repo

    async def enrich(
        self, user_id: str, existing_attributes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Builds the attribute map used for flag evaluation.

        Audience provider data wins when the user was found with at least one
        audience; otherwise flags are derived from the caller's attributes.
        Never raises: lookup failures take the caller-attribute path.
        """
        existing = dict(existing_attributes or {})

        try:
            lookup = await self.audience_repo.get_user_audiences(user_id)
        except Exception:
            log.exception("enrichment.lookup_failed", user_id=user_id)
            lookup = None

        if lookup is not None and lookup.found and lookup.audiences:
            log.info("enrichment.using_audiences", user_id=user_id)
            enriched = attributes_from_audiences(existing, lookup.attributes, lookup.audiences)
        else:
            log.info("enrichment.using_caller_attributes", user_id=user_id)
            enriched = attributes_from_caller(existing)

        enriched = drop_empty(enriched)
        log.debug("enrichment.result", user_id=user_id, attributes=enriched)
        return enriched

    async def is_user_in_audience(self, user_id: str, audience_name: str) -> bool:
        return await self.audience_repo.is_user_in_audience(user_id, audience_name)
