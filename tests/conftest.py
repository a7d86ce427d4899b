"""
Pytest configuration for LawCase Bench auth tests.
Sets up the Python path, test environment and common service fixtures.
"""

import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add the project root to Python path for all tests
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set up test environment variables (before settings are first imported)
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CREDENTIAL_STORE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET_KEY", "test-access-token-signing-secret-0123456789")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_HOST", "localhost")
os.environ.setdefault("DATABASE_PORT", "5432")
os.environ.setdefault("DATABASE_NAME", "lawcase_bench")
os.environ.setdefault("DATABASE_USER", "lawcase")
os.environ.setdefault("DATABASE_PASSWORD", "lawcase")

TEST_SECRET_KEY = "test-access-token-signing-secret-0123456789"
STRONG_PASSWORD = "TestPassword123!"


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def credential_store():
    """In-memory credential store seeded with the default roles."""
    from lawcase_auth.auth.credential_store import InMemoryCredentialStore
    from lawcase_auth.models.seed_data import build_default_roles

    return InMemoryCredentialStore(roles=build_default_roles())


@pytest.fixture
def token_service():
    from lawcase_auth.auth.jwt_utils import TokenService

    return TokenService(secret_key=TEST_SECRET_KEY, algorithm="HS256")


@pytest.fixture
def password_hasher():
    """bcrypt at the lowest cost so tests stay fast."""
    from lawcase_auth.utils.password_hashing import PasswordHasher

    return PasswordHasher(rounds=4)


@pytest.fixture
def two_factor_service():
    from lawcase_auth.auth.two_factor import TwoFactorService

    return TwoFactorService(issuer="LawCase Bench", valid_window=2, backup_code_count=10)


@pytest.fixture
def blacklist_service(credential_store, token_service):
    from lawcase_auth.auth.blacklist import BlacklistService

    return BlacklistService(credential_store, token_service)


@pytest.fixture
def fake_notifier():
    """EmailNotifier double that records calls instead of sending mail."""
    from lawcase_auth.services.email_notifier import EmailNotifier

    notifier = MagicMock(spec=EmailNotifier)
    notifier.send_verification_email = AsyncMock(return_value=True)
    notifier.send_password_reset_email = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def session_orchestrator(
    credential_store,
    token_service,
    password_hasher,
    two_factor_service,
    blacklist_service,
    fake_notifier,
):
    from lawcase_auth.auth.session_orchestrator import SessionOrchestrator

    return SessionOrchestrator(
        store=credential_store,
        token_service=token_service,
        password_hasher=password_hasher,
        two_factor_service=two_factor_service,
        blacklist_service=blacklist_service,
        notifier=fake_notifier,
        default_role_name="User",
        revoke_sessions_on_password_change=True,
    )


@pytest.fixture
def rbac_enforcer(credential_store, token_service, blacklist_service):
    from lawcase_auth.auth.rbac import RBACEnforcer

    return RBACEnforcer(credential_store, token_service, blacklist_service)
