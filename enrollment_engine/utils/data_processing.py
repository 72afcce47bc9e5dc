import re


def normalize_registration(registration):
    """
    Normalize an external registration number for allow-list comparison.
    Only digits are kept:
        "12.345-6" -> "123456"
        " 0042 "   -> "0042"
    """
    if registration is None:
        return ""

    return re.sub(r'\D', '', str(registration))


def clean_email(email):
    """
    Clean and normalize email addresses
    - Convert to lowercase
    - Remove leading/trailing whitespace
    """
    if not email:
        return ""

    return str(email).strip().lower()


def clean_text_field(text):
    """
    General text field cleaning
    - Remove leading/trailing whitespace
    - Replace multiple spaces with single space
    """
    if not text:
        return ""

    return re.sub(r'\s+', ' ', str(text).strip())
