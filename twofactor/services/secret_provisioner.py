"""
Secret Provisioner

Generates TOTP shared secrets and the otpauth:// payload that authenticator
apps scan. Nothing here touches the database: the secret only becomes
durable once enrollment proves the user can produce a code from it.
"""

import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from urllib.parse import quote, urlencode

import pyotp
import qrcode

from twofactor.config import settings

logger = logging.getLogger(__name__)

# Standard authenticator parameterization
TOTP_ALGORITHM = "SHA1"
TOTP_DIGITS = 6
TOTP_PERIOD = 30

# 32 base32 characters = 160 bits
SECRET_LENGTH = 32


@dataclass(frozen=True)
class ProvisionedSecret:
    secret: str
    provisioning_uri: str

    @property
    def manual_key(self) -> str:
        """The secret grouped in fours for typing into an app by hand."""
        return " ".join(self.secret[i : i + 4] for i in range(0, len(self.secret), 4))


class SecretProvisioner:
    def __init__(self, issuer: str | None = None):
        self.issuer = issuer or settings.totp_issuer

    def generate_secret(self, user_id: int, label: str | None = None) -> ProvisionedSecret:
        """
        Create a fresh 160-bit secret for a user.

        Args:
            user_id: Owner of the secret (only used for logging)
            label: Account label shown in the authenticator app, usually the email

        Returns:
            ProvisionedSecret with the base32 secret and provisioning URI
        """
        secret = pyotp.random_base32(length=SECRET_LENGTH)
        uri = self.build_uri(secret, label or "User")
        logger.info(f"Generated TOTP secret for user {user_id}")
        return ProvisionedSecret(secret=secret, provisioning_uri=uri)

    def build_uri(self, secret: str, label: str) -> str:
        # pyotp omits default parameters from the URI; some apps want them explicit
        query = urlencode(
            {
                "secret": secret,
                "issuer": self.issuer,
                "algorithm": TOTP_ALGORITHM,
                "digits": TOTP_DIGITS,
                "period": TOTP_PERIOD,
            },
            quote_via=quote,
        )
        return f"otpauth://totp/{quote(self.issuer)}:{quote(label)}?{query}"

    @staticmethod
    def render_provisioning_image(provisioning_uri: str) -> bytes:
        """Render the provisioning URI as a PNG QR code."""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=2,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    @classmethod
    def render_provisioning_data_url(cls, provisioning_uri: str) -> str:
        png = cls.render_provisioning_image(provisioning_uri)
        return "data:image/png;base64," + base64.b64encode(png).decode("utf-8")
