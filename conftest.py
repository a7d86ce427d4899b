"""
Pytest configuration for LawCase Bench auth.
Sets up the Python path and the environment settings are loaded from.
"""

import os
import sys
from pathlib import Path

# Add the project root to Python path for all tests
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

# Set up test environment variables
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CREDENTIAL_STORE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET_KEY", "test-access-token-signing-secret-0123456789")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
