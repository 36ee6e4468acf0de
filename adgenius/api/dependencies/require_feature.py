"""
Feature check dependencies.

FastAPI dependencies that block access when the current user's licenses
do not grant a feature. Features are the typed flag names or dotted set
lookups ("ai_models.gpt-4").
"""

import logging
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from adgenius.database.session import get_db_session
from adgenius.entitlements.errors import FeatureDeniedError
from adgenius.entitlements.models import Entitlement
from adgenius.entitlements.resolver import EntitlementResolver
from adgenius.platform.auth import AuthenticatedUser, get_current_user

logger = logging.getLogger(__name__)


def get_entitlement(
    user: AuthenticatedUser = Depends(get_current_user),
    db_session: Session = Depends(get_db_session),
) -> Entitlement:
    """Resolved entitlement of the current user."""
    return EntitlementResolver(db_session).resolve(user.user_id)


def require_feature(*features: str) -> Callable:
    """
    Dependency that requires at least one of the given features.

    Use on a route: Depends(require_feature("white_label"))
    Raises 402 (FEATURE_DENIED) if none is granted.
    """

    def _check(entitlement: Entitlement = Depends(get_entitlement)) -> Entitlement:
        if not features:
            return entitlement
        for feature in features:
            if entitlement.has_feature(feature):
                return entitlement
        logger.warning(
            "Feature denied: none of [%s] granted",
            ",".join(features),
            extra={"user_id": entitlement.user_id, "tier": entitlement.tier},
        )
        raise FeatureDeniedError(entitlement.user_id, features[0])

    return _check
