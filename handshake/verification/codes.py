"""
Code generation and the share message.

Codes are short and numeric so they can be read out over a phone call.
They are drawn from a CSPRNG; the rate limiter, not the code length, is
what keeps guessing impractical.
"""

import re
import secrets
from decimal import Decimal

from handshake.config import HandshakeSettings
from handshake.models.loan import LoanRecord

CURRENCY_SYMBOLS: dict[str, str] = {
    "INR": "₹",
    "USD": "$",
    "AED": "د.إ",
    "GBP": "£",
    "EUR": "€",
    "SGD": "S$",
    "AUD": "A$",
    "CAD": "C$",
    "CHF": "CHF",
    "JPY": "¥",
    "CNY": "¥",
    "HKD": "HK$",
    "NZD": "NZ$",
    "SEK": "kr",
    "KRW": "₩",
    "MXN": "$",
    "BRL": "R$",
    "ZAR": "R",
}


def generate_code(length: int) -> str:
    """Uniformly random, zero-padded numeric code."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def is_well_formed(code: str, length: int) -> bool:
    return re.fullmatch(rf"\d{{{length}}}", code) is not None


def format_amount(amount: Decimal, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol is None:
        return f"{currency.upper()} {amount:.2f}"
    return f"{symbol}{amount:.2f}"


def verify_url(code: str, settings: HandshakeSettings) -> str:
    """Short public link; the code is the only secret in it."""
    return f"{settings.share_base_url}/v/{code}"


def build_share_message(
    loan: LoanRecord,
    code: str,
    settings: HandshakeSettings,
) -> str:
    """
    Text the recorder forwards over SMS or WhatsApp.

    Only the amount is disclosed; the counterparty's own details are what
    they must supply to confirm.
    """
    lines = [
        f"Please verify our loan record in {settings.app_display_name}.",
        f"Amount: {format_amount(loan.principal_amount, loan.currency)}",
        f"Verification Code: {code}",
        f"Verify at: {verify_url(code, settings)}",
    ]
    return "\n".join(lines)
