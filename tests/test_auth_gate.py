"""
Tests for the bearer token gate.

Tests cover:
- Disabled gate returning an anonymous context
- HMAC, PEM and JWKS verification
- 401-class failures (AuthenticationError) vs 403-class (AuthorizationError)
- Scope extraction and enforcement
- The verified-token cache
"""

from __future__ import annotations

import json
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest import mock

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from mcp_time.config import SecurityConfig
from mcp_time.security.auth_gate import (
    AuthContext,
    AuthenticationError,
    AuthGate,
    AuthorizationError,
    TokenCache,
    extract_bearer_token,
)
from mcp_time.security.jwks_fetcher import JWKSFetcher, JWKSFetchError

SECRET = "test-secret-that-is-long-enough-for-hs256"

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def rsa_key_pair() -> tuple[Any, Any]:
    """Generate RSA key pair for testing."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


@pytest.fixture
def public_pem(rsa_key_pair: tuple[Any, Any]) -> str:
    _, public_key = rsa_key_pair
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def make_claims(**overrides: Any) -> dict[str, Any]:
    claims: dict[str, Any] = {
        "sub": "user-123",
        "exp": int(time.time()) + 3600,
        "scope": "time:tools time:resources",
    }
    for key, value in overrides.items():
        if value is None:
            claims.pop(key, None)
        else:
            claims[key] = value
    return claims


def hs_token(secret: str = SECRET, **overrides: Any) -> str:
    return jwt.encode(make_claims(**overrides), secret, algorithm="HS256")


@pytest.fixture
def gate() -> AuthGate:
    return AuthGate(enabled=True, secret=SECRET)


# =============================================================================
# Tests for Header Parsing
# =============================================================================


class TestExtractBearerToken:
    """Tests for extract_bearer_token."""

    def test_valid_header(self) -> None:
        """Test a well-formed header."""
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_is_case_insensitive(self) -> None:
        """Test lower-case scheme."""
        assert extract_bearer_token("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing(self, header: str | None) -> None:
        """Test that a missing header is reported as such."""
        with pytest.raises(AuthenticationError) as exc_info:
            extract_bearer_token(header)

        assert exc_info.value.details["reason"] == "missing_token"

    @pytest.mark.parametrize("header", ["Basic dXNlcjpwYXNz", "Bearer", "Bearer a b", "token"])
    def test_malformed(self, header: str) -> None:
        """Test that other schemes and shapes are malformed."""
        with pytest.raises(AuthenticationError) as exc_info:
            extract_bearer_token(header)

        assert exc_info.value.details["reason"] == "malformed_header"


# =============================================================================
# Tests for Authorization
# =============================================================================


class TestAuthorize:
    """Tests for AuthGate.authorize."""

    @pytest.mark.asyncio
    async def test_disabled_gate_is_anonymous(self) -> None:
        """Test that a disabled gate never inspects the header."""
        context = await AuthGate(enabled=False).authorize(None, ["time:tools"])

        assert context == AuthContext.anonymous()
        assert context.authenticated is False

    @pytest.mark.asyncio
    async def test_valid_hs256_token(self, gate: AuthGate) -> None:
        """Test a valid HMAC token with the required scope."""
        context = await gate.authorize(f"Bearer {hs_token()}", ["time:tools"])

        assert context.authenticated is True
        assert context.subject == "user-123"
        assert context.scopes == frozenset({"time:tools", "time:resources"})
        assert isinstance(context.expires_at, datetime)

    @pytest.mark.asyncio
    async def test_valid_rs256_with_pem(
        self, rsa_key_pair: tuple[Any, Any], public_pem: str
    ) -> None:
        """Test an RSA token verified with a configured PEM key."""
        private_key, _ = rsa_key_pair
        token = jwt.encode(make_claims(), private_key, algorithm="RS256")
        gate = AuthGate(enabled=True, public_key=public_pem)

        context = await gate.authorize(f"Bearer {token}", ["time:tools"])

        assert context.subject == "user-123"

    @pytest.mark.asyncio
    async def test_missing_header(self, gate: AuthGate) -> None:
        """Test that an enabled gate requires a token."""
        with pytest.raises(AuthenticationError):
            await gate.authorize(None, ["time:tools"])

    @pytest.mark.asyncio
    async def test_insufficient_scope(self, gate: AuthGate) -> None:
        """Test that a genuine token without the scope is forbidden."""
        with pytest.raises(AuthorizationError) as exc_info:
            await gate.authorize(f"Bearer {hs_token()}", ["time:prompts"])

        assert exc_info.value.details == {
            "reason": "insufficient_scope",
            "missing_scopes": ["time:prompts"],
        }

    @pytest.mark.asyncio
    async def test_no_scopes_required(self, gate: AuthGate) -> None:
        """Test that an endpoint without requirements accepts any valid token."""
        context = await gate.authorize(f"Bearer {hs_token(scope=None)}")

        assert context.scopes == frozenset()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "claims",
        [
            {"scope": None, "scp": ["time:tools"]},
            {"scope": None, "scopes": ["time:tools", 7]},
            {"scope": "time:tools"},
        ],
    )
    async def test_scope_claim_variants(self, gate: AuthGate, claims: dict[str, Any]) -> None:
        """Test each supported scope claim."""
        context = await gate.authorize(f"Bearer {hs_token(**claims)}", ["time:tools"])

        assert "time:tools" in context.scopes


# =============================================================================
# Tests for Verification Failures
# =============================================================================


class TestVerificationFailures:
    """Tests for tokens that must be rejected."""

    @pytest.mark.asyncio
    async def test_garbage_token(self, gate: AuthGate) -> None:
        """Test a token that is not a JWT."""
        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate("not-a-jwt")

        assert exc_info.value.details["reason"] == "decode_error"

    @pytest.mark.asyncio
    async def test_bad_signature(self, gate: AuthGate) -> None:
        """Test a token signed with another secret."""
        token = hs_token(secret="another-secret-that-is-also-long-enough")

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(token)

        assert exc_info.value.details["reason"] == "invalid_signature"

    @pytest.mark.asyncio
    async def test_wrong_audience(self) -> None:
        """Test audience verification."""
        gate = AuthGate(enabled=True, secret=SECRET, audience="time-mcp")

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(hs_token(aud="someone-else"))

        assert exc_info.value.details["reason"] == "invalid_audience"

    @pytest.mark.asyncio
    async def test_matching_audience(self) -> None:
        """Test that a matching audience is accepted."""
        gate = AuthGate(enabled=True, secret=SECRET, audience="time-mcp")

        context = await gate.authenticate(hs_token(aud="time-mcp"))

        assert context.authenticated is True

    @pytest.mark.asyncio
    async def test_wrong_issuer(self) -> None:
        """Test issuer verification."""
        gate = AuthGate(enabled=True, secret=SECRET, issuer="https://idp.example.com")

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(hs_token(iss="https://evil.example.com"))

        assert exc_info.value.details["reason"] == "invalid_issuer"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("claim", ["sub", "exp"])
    async def test_missing_required_claim(self, gate: AuthGate, claim: str) -> None:
        """Test that sub and exp are mandatory."""
        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(hs_token(**{claim: None}))

        assert exc_info.value.details == {"reason": "missing_claim", "claim": claim}

    @pytest.mark.asyncio
    async def test_empty_subject(self, gate: AuthGate) -> None:
        """Test that an empty sub is rejected."""
        with pytest.raises(AuthenticationError):
            await gate.authenticate(hs_token(sub=""))

    @pytest.mark.asyncio
    async def test_algorithm_not_accepted(self) -> None:
        """Test that tokens signed with an unlisted algorithm are rejected."""
        gate = AuthGate(enabled=True, algorithms=["RS256"], secret=SECRET)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(hs_token())

        assert exc_info.value.details["reason"] == "unsupported_algorithm"

    @pytest.mark.asyncio
    async def test_no_secret_for_hmac(self, public_pem: str) -> None:
        """Test HMAC tokens against a key-only gate."""
        gate = AuthGate(enabled=True, public_key=public_pem)

        with pytest.raises(AuthenticationError):
            await gate.authenticate(hs_token())

    @pytest.mark.asyncio
    async def test_expired_token_is_forbidden(self, gate: AuthGate) -> None:
        """Test that a genuine but expired token maps to AuthorizationError."""
        token = hs_token(exp=int(time.time()) - 60)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.authenticate(token)

        assert exc_info.value.details == {"reason": "token_expired"}

    @pytest.mark.asyncio
    async def test_expired_with_bad_signature_is_unauthenticated(self, gate: AuthGate) -> None:
        """Test that expiry is only reported for otherwise valid tokens."""
        token = hs_token(
            secret="another-secret-that-is-also-long-enough", exp=int(time.time()) - 60
        )

        with pytest.raises(AuthenticationError):
            await gate.authenticate(token)

    @pytest.mark.asyncio
    async def test_leeway_applies_to_expiry(self) -> None:
        """Test clock skew tolerance."""
        gate = AuthGate(enabled=True, secret=SECRET, leeway_seconds=120)

        context = await gate.authenticate(hs_token(exp=int(time.time()) - 60))

        assert context.subject == "user-123"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exp", [float("nan"), float("inf"), 10**30, -(10**30), 1e300]
    )
    async def test_out_of_range_exp(self, gate: AuthGate, exp: float) -> None:
        """Test that a signed but unrepresentable exp is unauthenticated."""
        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(hs_token(exp=exp))

        assert exc_info.value.details == {"reason": "invalid_claim", "claim": "exp"}


# =============================================================================
# Tests for JWKS Verification
# =============================================================================


class TestJWKSVerification:
    """Tests for keys resolved through a JWKS fetcher."""

    @pytest.fixture
    def fetcher(self, rsa_key_pair: tuple[Any, Any]) -> mock.AsyncMock:
        _, public_key = rsa_key_pair
        mock_fetcher = mock.AsyncMock(spec=JWKSFetcher)
        mock_fetcher.get_key.return_value = {"key": public_key, "alg": "RS256"}
        return mock_fetcher

    @pytest.fixture
    def rs_token(self, rsa_key_pair: tuple[Any, Any]) -> str:
        private_key, _ = rsa_key_pair
        return jwt.encode(
            make_claims(), private_key, algorithm="RS256", headers={"kid": "key-1"}
        )

    @pytest.mark.asyncio
    async def test_key_by_kid(self, fetcher: mock.AsyncMock, rs_token: str) -> None:
        """Test verification with a JWKS key."""
        gate = AuthGate(enabled=True, jwks_fetcher=fetcher)

        context = await gate.authenticate(rs_token)

        assert context.subject == "user-123"
        fetcher.get_key.assert_awaited_once_with("key-1")

    @pytest.mark.asyncio
    async def test_unknown_kid(self, fetcher: mock.AsyncMock, rs_token: str) -> None:
        """Test a kid absent from the key set."""
        fetcher.get_key.return_value = None
        gate = AuthGate(enabled=True, jwks_fetcher=fetcher)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(rs_token)

        assert exc_info.value.details["reason"] == "unknown_kid"

    @pytest.mark.asyncio
    async def test_missing_kid(
        self, fetcher: mock.AsyncMock, rsa_key_pair: tuple[Any, Any]
    ) -> None:
        """Test a token without a kid header."""
        private_key, _ = rsa_key_pair
        token = jwt.encode(make_claims(), private_key, algorithm="RS256")
        gate = AuthGate(enabled=True, jwks_fetcher=fetcher)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(token)

        assert exc_info.value.details["reason"] == "missing_kid"

    @pytest.mark.asyncio
    async def test_jwks_unavailable(self, fetcher: mock.AsyncMock, rs_token: str) -> None:
        """Test that fetch failures reject the token."""
        fetcher.get_key.side_effect = JWKSFetchError("down")
        gate = AuthGate(enabled=True, jwks_fetcher=fetcher)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authenticate(rs_token)

        assert exc_info.value.details["reason"] == "jwks_fetch_failed"


# =============================================================================
# Tests for the Token Cache
# =============================================================================


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _context(expires_at: float | None = None) -> AuthContext:
    return AuthContext(
        subject="user",
        authenticated=True,
        expires_at=datetime.fromtimestamp(expires_at, tz=UTC) if expires_at else None,
    )


class TestTokenCache:
    """Tests for TokenCache."""

    def test_hit_then_ttl_expiry(self) -> None:
        """Test that entries expire after the TTL."""
        clock = FakeClock()
        cache = TokenCache(ttl_seconds=60, clock=clock)
        context = _context()
        cache.put("tok", context)

        assert cache.get("tok") is context
        clock.now += 61
        assert cache.get("tok") is None
        assert len(cache) == 0

    def test_never_outlives_token(self) -> None:
        """Test that the token's own expiry bounds the entry."""
        clock = FakeClock()
        cache = TokenCache(ttl_seconds=600, clock=clock)
        cache.put("tok", _context(expires_at=clock.now + 5))

        clock.now += 6

        assert cache.get("tok") is None

    def test_lru_eviction(self) -> None:
        """Test that the least recently used entry is evicted."""
        cache = TokenCache(ttl_seconds=60, max_entries=2, clock=FakeClock())
        cache.put("a", _context())
        cache.put("b", _context())
        cache.get("a")
        cache.put("c", _context())

        assert cache.get("a") is not None
        assert cache.get("b") is None
        assert cache.get("c") is not None

    def test_clear(self) -> None:
        """Test clearing the cache."""
        cache = TokenCache(ttl_seconds=60)
        cache.put("a", _context())
        cache.clear()

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_gate_skips_verification_on_hit(self) -> None:
        """Test that cached tokens are not decoded again."""
        gate = AuthGate(enabled=True, secret=SECRET, token_cache=TokenCache(ttl_seconds=60))
        token = hs_token()

        with mock.patch.object(gate, "_decode", wraps=gate._decode) as decode:
            first = await gate.authorize(f"Bearer {token}", ["time:tools"])
            second = await gate.authorize(f"Bearer {token}", ["time:tools"])

        assert first is second
        assert decode.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_grants_no_extra_scope(self) -> None:
        """Test that scope checks still run for cached tokens."""
        gate = AuthGate(enabled=True, secret=SECRET, token_cache=TokenCache(ttl_seconds=60))
        token = hs_token()
        await gate.authorize(f"Bearer {token}", ["time:tools"])

        with pytest.raises(AuthorizationError):
            await gate.authorize(f"Bearer {token}", ["time:prompts"])


# =============================================================================
# Tests for Construction
# =============================================================================


class TestFromConfig:
    """Tests for AuthGate.from_config."""

    def test_reads_public_key_file(self, tmp_path: Path, public_pem: str) -> None:
        """Test that public_key_path is loaded."""
        key_file = tmp_path / "key.pem"
        key_file.write_text(public_pem)
        config = SecurityConfig(auth_enabled=True, public_key_path=str(key_file))

        gate = AuthGate.from_config(config)

        assert gate.enabled is True
        assert gate._public_key == public_pem

    def test_missing_key_file(self, tmp_path: Path) -> None:
        """Test that an unreadable key file raises OSError."""
        config = SecurityConfig(
            auth_enabled=True, public_key_path=str(tmp_path / "missing.pem")
        )

        with pytest.raises(OSError):
            AuthGate.from_config(config)

    def test_token_cache_enabled_by_ttl(self) -> None:
        """Test that a positive TTL creates the cache."""
        config = SecurityConfig(secret=SECRET, token_cache_ttl_seconds=30)

        assert AuthGate.from_config(config)._token_cache is not None
        assert AuthGate.from_config(SecurityConfig())._token_cache is None

    def test_jwks_url_creates_fetcher(self) -> None:
        """Test that a JWKS URL wires up a fetcher."""
        config = SecurityConfig(
            auth_enabled=True, jwks_url="https://idp.example.com/jwks.json"
        )

        gate = AuthGate.from_config(config)

        assert isinstance(gate._jwks_fetcher, JWKSFetcher)

    def test_context_to_dict(self) -> None:
        """Test AuthContext serialization for logs."""
        context = AuthContext(subject="u", scopes=frozenset({"b", "a"}), authenticated=True)

        assert json.loads(json.dumps(context.to_dict()))["scopes"] == ["a", "b"]
