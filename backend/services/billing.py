"""
Billing capability query.

check_premium() is evaluated BEFORE any write that depends on it (e.g. the
free-tier saved-camps limit) and its answer is passed in as a plain bool.
The local subscription columns are authoritative; the Stripe lookup is
advisory and any provider failure means "not premium".
"""
import logging
import os

import stripe

logger = logging.getLogger(__name__)

PREMIUM_STRIPE_STATUSES = {'active', 'trialing'}


def _stripe_has_active_subscription(customer_id: str, api_key: str) -> bool:
    subscriptions = stripe.Subscription.list(customer=customer_id, status='all', limit=10, api_key=api_key)
    return any(sub.get('status') in PREMIUM_STRIPE_STATUSES for sub in subscriptions.get('data', []))


def check_premium(family, use_provider: bool = True, api_key: str = None) -> bool:
    """
    Does this family have premium access?

    Args:
        family: Family or None (anonymous is never premium)
        use_provider: Also ask Stripe when local state says no
        api_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)

    Returns:
        True only on a positive answer; errors degrade to False
    """
    if family is None:
        return False
    if family.is_subscribed():
        return True

    api_key = api_key or os.getenv('STRIPE_SECRET_KEY')
    if not use_provider or not api_key or not family.stripe_customer_id:
        return False

    try:
        return _stripe_has_active_subscription(family.stripe_customer_id, api_key)
    except Exception as e:
        # Provider outage must never block the family; assume free tier
        logger.warning(f"Stripe subscription lookup failed for family {family.id}: {e}")
        return False
