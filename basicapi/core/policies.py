# ==============================================================================
# AUTHORIZATION POLICIES - Scope Claim Requirements
# ==============================================================================
# Named policies binding an authentication scheme, an authenticated-user
# requirement and an exact-match claim requirement
# ==============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Tuple

from basicapi.core.security import BEARER_SCHEME, ClaimsPrincipal

logger = logging.getLogger(__name__)


SCOPE_CLAIM = "scope"

READER_POLICY = "pet-store-reader"
WRITER_POLICY = "pet-store-writer"


class AuthorizationResult(str, Enum):
    """Outcome of evaluating a policy against a principal."""
    SUCCESS = "success"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class AuthorizationPolicy:
    """
    A named authorization requirement.

    Attributes:
        name: Policy name referenced by endpoints
        authentication_schemes: Schemes whose principals may satisfy it
        require_authenticated_user: Reject anonymous principals
        required_claims: Claim type -> accepted values (exact match)
    """
    name: str
    authentication_schemes: Tuple[str, ...] = (BEARER_SCHEME,)
    require_authenticated_user: bool = True
    required_claims: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def evaluate(self, principal: ClaimsPrincipal) -> AuthorizationResult:
        """
        Check ``principal`` against every requirement of this policy.

        Args:
            principal: Request principal

        Returns:
            AuthorizationResult: SUCCESS, UNAUTHENTICATED or FORBIDDEN
        """
        if self.require_authenticated_user and not principal.is_authenticated:
            return AuthorizationResult.UNAUTHENTICATED

        if (
            principal.is_authenticated
            and principal.authentication_scheme not in self.authentication_schemes
        ):
            return AuthorizationResult.UNAUTHENTICATED

        for claim_type, allowed_values in self.required_claims.items():
            if not principal.has_claim(claim_type, allowed_values):
                logger.debug(
                    f"Policy '{self.name}' denied {principal.subject!r}: "
                    f"missing {claim_type} in {allowed_values}"
                )
                return AuthorizationResult.FORBIDDEN

        return AuthorizationResult.SUCCESS


def scope_policy(name: str, scope: str) -> AuthorizationPolicy:
    """Bearer-authenticated policy requiring ``scope=<scope>``."""
    return AuthorizationPolicy(
        name=name,
        authentication_schemes=(BEARER_SCHEME,),
        require_authenticated_user=True,
        required_claims={SCOPE_CLAIM: (scope,)},
    )


def build_authorization_policies() -> Dict[str, AuthorizationPolicy]:
    """
    Build the reader and writer policies.

    Returns:
        Mapping of policy name to policy
    """
    policies = {
        READER_POLICY: scope_policy(READER_POLICY, "pet-store-reader"),
        WRITER_POLICY: scope_policy(WRITER_POLICY, "pet-store-writer"),
    }
    logger.info(f"Registered authorization policies: {', '.join(policies)}")
    return policies


POLICY_NAMES = frozenset({READER_POLICY, WRITER_POLICY})
