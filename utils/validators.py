import re
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9 ()-]{7,20}$")


class ISBNValidator:
    """ISBN format check shared by the service and the CLI form.

    An ISBN is accepted when, after dropping hyphens and spaces, it is exactly
    10 or 13 digits. Checksums are not verified.
    """

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"[\s-]", "", raw)

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        return s.isdigit() and len(s) in (10, 13)


class TextValidator:
    """Basic text checks for titles, author and member names."""

    @staticmethod
    def _is_non_empty_alpha(text: Optional[str]) -> bool:
        if text is None:
            return False
        t = text.strip()
        if not t:
            return False
        # reject purely numeric / punctuation values
        return any(c.isalpha() for c in t)

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        # titles such as "1984" are legitimate
        return title is not None and bool(title.strip())

    @staticmethod
    def validate_author(author: Optional[str]) -> bool:
        if author is None:
            return False
        t = author.strip()
        if not t:
            return False
        return not t.isdigit()

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        return TextValidator._is_non_empty_alpha(name)


class ContactValidator:
    """Email and phone format checks for member registration."""

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        if email is None:
            return False
        return bool(_EMAIL_RE.match(email.strip()))

    @staticmethod
    def validate_phone(phone: Optional[str]) -> bool:
        if phone is None:
            return False
        p = phone.strip()
        if not _PHONE_RE.match(p):
            return False
        digits = sum(c.isdigit() for c in p)
        return 7 <= digits <= 15
