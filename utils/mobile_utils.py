import re

import phonenumbers
from core.config import DEFAULT_COUNTRY

INDIAN_MOBILE = re.compile(r"^[6-9]\d{9}$")
PINCODE = re.compile(r"^[1-9]\d{5}$")


def national_mobile(msisdn: str) -> str:
    """
    Reduce a mobile number to the 10-digit Indian national form.

    Examples:
      "9876543210"      -> "9876543210"
      "+91 98765 43210" -> "9876543210"
      "09876543210"     -> "9876543210"

    Raises ValueError for anything that is not a valid Indian mobile.
    """
    msisdn = (msisdn or "").strip()
    try:
        parsed = phonenumbers.parse(msisdn, DEFAULT_COUNTRY.upper())
    except phonenumbers.NumberParseException:
        raise ValueError("Invalid mobile number format")

    national = str(parsed.national_number)
    if parsed.country_code != 91 or not INDIAN_MOBILE.match(national):
        raise ValueError("Mobile number must be a 10-digit Indian mobile number")
    if not phonenumbers.is_valid_number(parsed):
        raise ValueError("Invalid or unsupported mobile number")
    return national


def valid_pincode(pincode: str) -> str:
    pincode = pincode.strip()
    if not PINCODE.match(pincode):
        raise ValueError("pincode must be a 6-digit Indian PIN code")
    return pincode
