"""Root test configuration: rate limiter reset and bearer-token helpers."""

import pytest

import visioncast.authentication
import visioncast.rate_limiting

TEST_TOKEN_SECRET = "test-token-secret-with-enough-length-for-hs256"


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset the rate limiter state before each test to prevent cross-test contamination."""
    visioncast.rate_limiting.generation_rate_limit_configuration.configure("1000/minute")
    visioncast.rate_limiting.rate_limiter.reset()


@pytest.fixture
def access_token_verifier():
    return visioncast.authentication.AccessTokenVerifier(token_secret=TEST_TOKEN_SECRET)


@pytest.fixture
def owner_headers(access_token_verifier):
    """Authorization headers for the user ``owner-1``."""
    return {"Authorization": f"Bearer {access_token_verifier.issue_access_token('owner-1')}"}


@pytest.fixture
def other_user_headers(access_token_verifier):
    """Authorization headers for the user ``intruder-2``."""
    return {"Authorization": f"Bearer {access_token_verifier.issue_access_token('intruder-2')}"}
