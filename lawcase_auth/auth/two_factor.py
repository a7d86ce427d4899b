"""
Time-based two-factor authentication.

Generates TOTP secrets, provisioning QR codes and single-use backup codes,
and verifies codes. Persisting the material and the
Disabled -> Setup-Pending -> Enabled transitions are handled by the
session orchestrator.
"""

import base64
import hmac
import secrets
from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional, Sequence

import pyotp
import qrcode

from lawcase_auth.core.config_manager import settings

BACKUP_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
BACKUP_CODE_LENGTH = 8


@dataclass
class TwoFactorSetup:
    """Material handed to the user when two-factor setup starts."""

    secret: str
    provisioning_uri: str
    qr_code: str
    backup_codes: List[str] = field(default_factory=list)


class TwoFactorService:
    def __init__(
        self,
        issuer: Optional[str] = None,
        valid_window: Optional[int] = None,
        backup_code_count: Optional[int] = None,
    ):
        self.issuer = issuer or settings.totp_issuer
        self.valid_window = (
            settings.totp_valid_window if valid_window is None else valid_window
        )
        self.backup_code_count = (
            settings.backup_code_count
            if backup_code_count is None
            else backup_code_count
        )

    def setup(self, email: str) -> TwoFactorSetup:
        """Create a fresh secret, its QR code and a new set of backup codes."""
        secret = pyotp.random_base32()
        provisioning_uri = pyotp.TOTP(secret).provisioning_uri(
            name=email, issuer_name=self.issuer
        )
        return TwoFactorSetup(
            secret=secret,
            provisioning_uri=provisioning_uri,
            qr_code=self.render_qr_code(provisioning_uri),
            backup_codes=self.generate_backup_codes(),
        )

    def verify_code(self, secret: Optional[str], code: Optional[str]) -> bool:
        """Check a TOTP code, tolerating ``valid_window`` steps of clock drift."""
        if not secret or not code:
            return False
        code = code.strip().replace(" ", "")
        if not (code.isascii() and code.isdigit()):
            return False
        return pyotp.TOTP(secret).verify(code, valid_window=self.valid_window)

    def generate_backup_codes(self) -> List[str]:
        return [
            "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
            for _ in range(self.backup_code_count)
        ]

    @staticmethod
    def normalize_backup_code(code: str) -> str:
        return code.strip().replace("-", "").replace(" ", "").upper()

    def match_backup_code(self, backup_codes: Sequence[str], code: Optional[str]) -> bool:
        """Constant-time membership test; does not consume the code."""
        if not code:
            return False
        candidate = self.normalize_backup_code(code)
        matched = False
        for stored in backup_codes:
            # Bytes, since compare_digest rejects non-ASCII str; every code is checked
            matched |= hmac.compare_digest(stored.encode(), candidate.encode())
        return matched

    @staticmethod
    def render_qr_code(provisioning_uri: str) -> str:
        """Render the provisioning URI as a PNG data URL."""
        qr = qrcode.QRCode(version=1, box_size=10, border=5)
        qr.add_data(provisioning_uri)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        qr_base64 = base64.b64encode(buffer.getvalue()).decode()
        return f"data:image/png;base64,{qr_base64}"
