# ==============================================================================
# SECURITY TESTS
# ==============================================================================
# Signing keys, bearer token validation and authorization policies
# ==============================================================================

from datetime import timedelta

import pytest
from cryptography.hazmat.primitives import serialization
from jose import jwt

from basicapi.api.dependencies import require_policy
from basicapi.core.exceptions import (
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
)
from basicapi.core.policies import (
    READER_POLICY,
    SCOPE_CLAIM,
    WRITER_POLICY,
    AuthorizationResult,
    build_authorization_policies,
)
from basicapi.core.security import (
    ANONYMOUS,
    BEARER_SCHEME,
    KEY_SIZE,
    SIGNING_ALGORITHM,
    VALID_AUDIENCE,
    VALID_ISSUER,
    ClaimsPrincipal,
    TokenValidator,
    extract_bearer_token,
    generate_signing_credentials,
    issue_token,
)


class TestSigningCredentials:
    """RSA key generation."""

    def test_key_size(self, credentials):
        public_key = serialization.load_pem_public_key(credentials.public_key_pem.encode())
        assert public_key.key_size == KEY_SIZE == 2048
        assert credentials.algorithm == SIGNING_ALGORITHM

    def test_private_key_not_in_repr(self, credentials):
        assert "PRIVATE KEY" not in repr(credentials)

    def test_token_header_carries_key_id(self, credentials):
        token = issue_token(credentials, "bench", READER_POLICY)
        header = jwt.get_unverified_header(token)

        assert header["alg"] == "RS256"
        assert header["kid"] == credentials.key_id


class TestTokenValidation:
    """RS256 bearer token validation."""

    def test_valid_token(self, credentials):
        token = issue_token(credentials, "bench", READER_POLICY)
        claims = TokenValidator(credentials).validate(token)

        assert claims["sub"] == "bench"
        assert claims["aud"] == VALID_AUDIENCE
        assert claims["iss"] == VALID_ISSUER
        assert claims[SCOPE_CLAIM] == READER_POLICY

    def test_wrong_audience(self, credentials):
        token = issue_token(credentials, "bench", READER_POLICY, audience="Someone")
        with pytest.raises(InvalidTokenError):
            TokenValidator(credentials).validate(token)

    def test_wrong_issuer(self, credentials):
        token = issue_token(credentials, "bench", READER_POLICY, issuer="Elsewhere")
        with pytest.raises(InvalidTokenError):
            TokenValidator(credentials).validate(token)

    def test_expired(self, credentials):
        token = issue_token(credentials, "bench", READER_POLICY, lifetime=timedelta(minutes=-5))
        with pytest.raises(TokenExpiredError):
            TokenValidator(credentials).validate(token)

    def test_other_key(self, credentials):
        token = issue_token(generate_signing_credentials(), "bench", READER_POLICY)
        with pytest.raises(InvalidTokenError):
            TokenValidator(credentials).validate(token)

    def test_garbage(self, credentials):
        with pytest.raises(InvalidTokenError):
            TokenValidator(credentials).validate("not-a-jwt")

    @pytest.mark.parametrize("missing", ["aud", "iss", "exp"])
    def test_required_claim_missing(self, credentials, missing):
        """A correctly signed token without aud, iss or exp is rejected."""
        claims = {
            "sub": "bench",
            "aud": VALID_AUDIENCE,
            "iss": VALID_ISSUER,
            "exp": 4102444800,
            SCOPE_CLAIM: WRITER_POLICY,
        }
        del claims[missing]
        token = jwt.encode(claims, credentials.private_key_pem, algorithm=SIGNING_ALGORITHM)

        with pytest.raises(InvalidTokenError):
            TokenValidator(credentials).validate(token)
        assert TokenValidator(credentials).authenticate(f"Bearer {token}") is ANONYMOUS


class TestAuthenticate:
    """Header to principal resolution."""

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic Ym9iOnNlY3JldA=="])
    def test_no_bearer_token(self, credentials, header):
        assert TokenValidator(credentials).authenticate(header) is ANONYMOUS

    def test_invalid_token_is_anonymous(self, credentials):
        assert TokenValidator(credentials).authenticate("Bearer not-a-jwt") is ANONYMOUS

    def test_valid_token(self, credentials):
        token = issue_token(credentials, "bench", WRITER_POLICY)
        principal = TokenValidator(credentials).authenticate(f"bearer {token}")

        assert principal.is_authenticated
        assert principal.authentication_scheme == BEARER_SCHEME
        assert principal.subject == "bench"

    def test_extract_bearer_token(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"


class TestPolicies:
    """Scope-based authorization policies."""

    @pytest.fixture
    def policies(self):
        return build_authorization_policies()

    def test_policy_definitions(self, policies):
        assert set(policies) == {READER_POLICY, WRITER_POLICY}
        for name, policy in policies.items():
            assert policy.name == name
            assert policy.authentication_schemes == (BEARER_SCHEME,)
            assert policy.require_authenticated_user
            assert dict(policy.required_claims) == {SCOPE_CLAIM: (name,)}

    def test_anonymous_is_unauthenticated(self, policies):
        for policy in policies.values():
            assert policy.evaluate(ANONYMOUS) is AuthorizationResult.UNAUTHENTICATED

    def test_wrong_scheme_is_unauthenticated(self, policies):
        principal = ClaimsPrincipal(
            claims={SCOPE_CLAIM: READER_POLICY},
            is_authenticated=True,
            authentication_scheme="Cookies",
        )
        assert policies[READER_POLICY].evaluate(principal) is AuthorizationResult.UNAUTHENTICATED

    def test_scope_per_policy(self, policies):
        reader = ClaimsPrincipal({SCOPE_CLAIM: READER_POLICY}, True, BEARER_SCHEME)

        assert policies[READER_POLICY].evaluate(reader) is AuthorizationResult.SUCCESS
        assert policies[WRITER_POLICY].evaluate(reader) is AuthorizationResult.FORBIDDEN

    def test_space_separated_scope_is_one_value(self, policies):
        """A string claim is compared whole, never split on spaces."""
        principal = ClaimsPrincipal(
            {SCOPE_CLAIM: f"{READER_POLICY} {WRITER_POLICY}"}, True, BEARER_SCHEME
        )

        assert policies[READER_POLICY].evaluate(principal) is AuthorizationResult.FORBIDDEN
        assert policies[WRITER_POLICY].evaluate(principal) is AuthorizationResult.FORBIDDEN

    def test_array_scope_grants_each_value(self, policies, credentials):
        token = issue_token(credentials, "bench", [READER_POLICY, WRITER_POLICY])
        principal = TokenValidator(credentials).authenticate(f"Bearer {token}")

        assert policies[READER_POLICY].evaluate(principal) is AuthorizationResult.SUCCESS
        assert policies[WRITER_POLICY].evaluate(principal) is AuthorizationResult.SUCCESS

    def test_scope_match_is_exact(self, policies):
        principal = ClaimsPrincipal({SCOPE_CLAIM: "Pet-Store-Reader"}, True, BEARER_SCHEME)
        assert policies[READER_POLICY].evaluate(principal) is AuthorizationResult.FORBIDDEN

    def test_unknown_policy_dependency(self):
        with pytest.raises(ConfigurationError):
            require_policy("pet-store-admin")
