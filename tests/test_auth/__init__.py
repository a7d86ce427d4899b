"""
Auth Module Tests
----------------
Tests for token issuance and verification, the credential store, blacklisting,
two-factor authentication, role checks and the session lifecycle.
"""
