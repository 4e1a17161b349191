import pytest

from utils.validators import ContactValidator, ISBNValidator, TextValidator


@pytest.mark.parametrize("isbn", ["0441013597", "9780441013593", "978-0-441-01359-3", "0 441 01359 7"])
def test_valid_isbns(isbn):
    assert ISBNValidator.is_valid_isbn(isbn)


@pytest.mark.parametrize("isbn", [None, "", "123456789", "12345678901", "123456789X", "97804410135931"])
def test_invalid_isbns(isbn):
    assert not ISBNValidator.is_valid_isbn(isbn)


def test_normalize_isbn_drops_separators():
    assert ISBNValidator.normalize_isbn("978-0 441-01359-3") == "9780441013593"
    assert ISBNValidator.normalize_isbn(None) == ""


def test_title_and_author():
    assert TextValidator.validate_title("1984")
    assert not TextValidator.validate_title("   ")
    assert TextValidator.validate_author("George Orwell")
    assert not TextValidator.validate_author("12345")
    assert not TextValidator.validate_author(None)


def test_member_name_needs_a_letter():
    assert TextValidator.validate_name("Ada Lovelace")
    assert not TextValidator.validate_name("42")
    assert not TextValidator.validate_name("")


@pytest.mark.parametrize("email,ok", [
    ("ada@example.com", True),
    (" ada@example.com ", True),
    ("ada@example", False),
    ("ada example.com", False),
    (None, False),
])
def test_email(email, ok):
    assert ContactValidator.validate_email(email) is ok


@pytest.mark.parametrize("phone,ok", [
    ("+44 20 7946 0958", True),
    ("555-0100", True),
    ("12", False),
    ("call me", False),
    ("1234567890123456", False),
])
def test_phone(phone, ok):
    assert ContactValidator.validate_phone(phone) is ok
