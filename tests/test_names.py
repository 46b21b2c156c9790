"""Tests for name normalization and the phone-update rule."""

import pytest

from loan_import.identity.names import is_null_like, is_valid_phone, normalize_name, should_update_phone


class TestNormalizeName:
    """Tests for normalize_name."""

    def test_trims_uppercases_and_collapses(self) -> None:
        assert normalize_name("  juan   pérez\tlópez ") == "JUAN PÉREZ LÓPEZ"

    def test_none_is_empty(self) -> None:
        assert normalize_name(None) == ""

    def test_equal_after_normalization(self) -> None:
        """Spelling variants that differ only in case and spacing collapse."""
        assert normalize_name("Ana  Ruiz") == normalize_name("ANA RUIZ ")


class TestNullLike:
    """Tests for placeholder detection."""

    @pytest.mark.parametrize("value", [None, "", "  ", "NA", "n/a", "Pendiente", "null", "-", "undefined"])
    def test_placeholders(self, value: str | None) -> None:
        assert is_null_like(value)

    def test_real_name(self) -> None:
        assert not is_null_like("ROSA MEDINA")


class TestPhoneRule:
    """Truth table of the phone-update rule."""

    @pytest.mark.parametrize(
        "phone, valid",
        [
            ("5512345678", True),
            ("55-1234-5678", True),
            (None, False),
            ("", False),
            ("NA", False),
            ("0000000000", False),
            ("sin telefono", False),
        ],
    )
    def test_is_valid_phone(self, phone: str | None, valid: bool) -> None:
        assert is_valid_phone(phone) is valid

    @pytest.mark.parametrize(
        "stored, incoming, update",
        [
            (None, "5512345678", True),
            ("NA", "5512345678", True),
            ("0000", "5512345678", True),
            ("5511111111", "5512345678", True),
            ("5512345678", "5512345678", False),
            ("5512345678", " 5512345678 ", False),
            ("5512345678", None, False),
            ("5512345678", "NA", False),
            ("5512345678", "000000", False),
            (None, None, False),
        ],
    )
    def test_should_update_phone(self, stored: str | None, incoming: str | None, update: bool) -> None:
        assert should_update_phone(stored, incoming) is update
