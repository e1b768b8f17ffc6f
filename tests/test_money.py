import pytest

from money import format_currency, parse_currency


def test_format_currency_uses_brazilian_separators():
    assert format_currency(123456) == "R$ 1.234,56"
    assert format_currency(5) == "R$ 0,05"
    assert format_currency(100000000) == "R$ 1.000.000,00"
    assert format_currency(-30000) == "-R$ 300,00"
    assert format_currency(123456, include_symbol=False) == "1.234,56"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("R$ 1.234,56", 123456),
        ("1234,56", 123456),
        ("1234.56", 123456),
        ("1.234", 123400),
        ("1.234.567", 123456700),
        ("12,5", 1250),
        ("  300 ", 30000),
        ("-45,10", -4510),
        ("0,005", 1),
    ],
)
def test_parse_currency(raw, expected):
    assert parse_currency(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "R$", "abc", ","])
def test_parse_currency_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_currency(raw)
