# ==============================================================================
# SECURITY MODULE - Signing Keys & Bearer Token Validation
# ==============================================================================
# RSA key pair generated once per process, RS256 token issue/validation,
# claims principal attached to each request
# ==============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from uuid import uuid4

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import ExpiredSignatureError, JWTError, jwt

from basicapi.core.exceptions import InvalidTokenError, TokenExpiredError

logger = logging.getLogger(__name__)


# ==============================================================================
# CONSTANTS
# ==============================================================================

BEARER_SCHEME = "Bearer"
SIGNING_ALGORITHM = "RS256"
KEY_SIZE = 2048

# Token validation parameters are fixed at build time
VALID_AUDIENCE = "Myself"
VALID_ISSUER = "BasicApi"

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

# jose skips aud/iss/exp checks when the claim is absent
_REQUIRED_CLAIMS = {"require_aud": True, "require_iss": True, "require_exp": True}


# ==============================================================================
# SIGNING CREDENTIALS
# ==============================================================================

@dataclass(frozen=True)
class SigningCredentials:
    """
    RSA key pair used to sign and validate bearer tokens.

    The private half is handed to whatever issues tokens for the benchmark
    client; this process only needs the public half to validate them.

    Attributes:
        private_key_pem: PKCS#8 PEM encoded private key
        public_key_pem: SubjectPublicKeyInfo PEM encoded public key
        algorithm: JWS algorithm name
        key_id: Identifier written to the ``kid`` header
    """
    private_key_pem: str = field(repr=False)
    public_key_pem: str
    algorithm: str = SIGNING_ALGORITHM
    key_id: str = field(default_factory=lambda: uuid4().hex)


def generate_signing_credentials(key_size: int = KEY_SIZE) -> SigningCredentials:
    """
    Generate a fresh RSA signing key pair.

    Synchronous and CPU-bound; called exactly once while services are
    configured. Any failure propagates and aborts startup.

    Args:
        key_size: RSA modulus size in bits

    Returns:
        SigningCredentials: PEM encoded key pair
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")

    credentials = SigningCredentials(
        private_key_pem=private_pem,
        public_key_pem=public_pem,
    )
    logger.info(f"Generated {key_size}-bit RSA signing key (kid={credentials.key_id})")
    return credentials


# ==============================================================================
# CLAIMS PRINCIPAL
# ==============================================================================

@dataclass(frozen=True)
class ClaimsPrincipal:
    """
    Identity attached to a request by the authentication middleware.

    A claim whose JSON value is an array counts as several claims of the
    same type; a string is a single claim and is never split.
    """
    claims: Dict[str, Any] = field(default_factory=dict)
    is_authenticated: bool = False
    authentication_scheme: Optional[str] = None

    @property
    def subject(self) -> Optional[str]:
        return self.claims.get("sub")

    def claim_values(self, claim_type: str) -> List[str]:
        """Return every value carried for ``claim_type``."""
        value = self.claims.get(claim_type)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        return [str(value)]

    def has_claim(self, claim_type: str, allowed_values: Iterable[str]) -> bool:
        """Exact-match check of ``claim_type`` against ``allowed_values``."""
        allowed = set(allowed_values)
        return any(value in allowed for value in self.claim_values(claim_type))


ANONYMOUS = ClaimsPrincipal()


# ==============================================================================
# TOKEN VALIDATION
# ==============================================================================

class TokenValidator:
    """
    Validates RS256 bearer tokens against the process signing key.

    Checks signature, expiry, audience and issuer.

    Example:
        >>> validator = TokenValidator(credentials)
        >>> claims = validator.validate(token)
        >>> claims["scope"]
        'pet-store-reader'
    """

    def __init__(
        self,
        credentials: SigningCredentials,
        audience: str = VALID_AUDIENCE,
        issuer: str = VALID_ISSUER,
    ) -> None:
        self._public_key = credentials.public_key_pem
        self._algorithms = [credentials.algorithm]
        self.audience = audience
        self.issuer = issuer

    def validate(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a JWT token.

        Args:
            token: Encoded JWT token

        Returns:
            Dictionary containing the token claims

        Raises:
            TokenExpiredError: If token has expired
            InvalidTokenError: If signature, audience or issuer is wrong
        """
        try:
            return jwt.decode(
                token,
                self._public_key,
                algorithms=self._algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options=_REQUIRED_CLAIMS,
            )
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError as e:
            raise InvalidTokenError(message=f"Invalid token: {str(e)}")

    def authenticate(self, authorization: Optional[str]) -> ClaimsPrincipal:
        """
        Resolve an ``Authorization`` header value to a principal.

        Missing, non-bearer or invalid tokens give the anonymous principal.

        Args:
            authorization: Raw header value, if any

        Returns:
            ClaimsPrincipal: Authenticated principal or ``ANONYMOUS``
        """
        token = extract_bearer_token(authorization)
        if token is None:
            return ANONYMOUS

        try:
            claims = self.validate(token)
        except (TokenExpiredError, InvalidTokenError) as e:
            logger.debug(f"Bearer token rejected: {e.message}")
            return ANONYMOUS

        return ClaimsPrincipal(
            claims=claims,
            is_authenticated=True,
            authentication_scheme=BEARER_SCHEME,
        )


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token part of a ``Bearer <token>`` header value."""
    if not authorization:
        return None

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != BEARER_SCHEME.lower():
        return None

    token = token.strip()
    return token or None


# ==============================================================================
# TOKEN ISSUE
# ==============================================================================

def issue_token(
    credentials: SigningCredentials,
    subject: str,
    scopes: Union[str, Tuple[str, ...], List[str]] = (),
    lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
    audience: str = VALID_AUDIENCE,
    issuer: str = VALID_ISSUER,
    additional_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Sign a bearer token with the process credentials.

    Args:
        credentials: Signing key pair
        subject: Token subject
        scopes: One scope (string claim) or several (array claim)
        lifetime: Time until expiry; negative values produce expired tokens
        audience: ``aud`` claim
        issuer: ``iss`` claim
        additional_claims: Extra claims merged last

    Returns:
        Encoded JWT string

    Example:
        >>> token = issue_token(credentials, "bench", "pet-store-reader")
    """
    now = datetime.now(timezone.utc)

    claims: Dict[str, Any] = {
        "sub": subject,
        "jti": str(uuid4()),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "nbf": now if lifetime > timedelta(0) else now + lifetime,
        "exp": now + lifetime,
    }

    if isinstance(scopes, str):
        claims["scope"] = scopes
    elif scopes:
        claims["scope"] = list(scopes)

    if additional_claims:
        claims.update(additional_claims)

    return jwt.encode(
        claims,
        credentials.private_key_pem,
        algorithm=credentials.algorithm,
        headers={"kid": credentials.key_id},
    )
