import pytest

from engine.phone import clean_phone, generate_variants, strip_chat_suffix


def test_thirteen_digit_mobile_adds_form_without_ninth_digit() -> None:
    assert generate_variants("5511987654321") == ["5511987654321", "551187654321"]


def test_twelve_digit_number_adds_form_with_ninth_digit() -> None:
    assert generate_variants("551187654321") == ["551187654321", "5511987654321"]


def test_eleven_digit_local_mobile_gets_country_code_forms() -> None:
    assert generate_variants("11987654321") == [
        "11987654321",
        "5511987654321",
        "551187654321",
    ]


def test_ten_digit_local_number_gets_country_code_forms() -> None:
    assert generate_variants("1187654321") == [
        "1187654321",
        "551187654321",
        "5511987654321",
    ]


def test_eleven_digit_landline_without_ninth_digit_only_adds_country_code() -> None:
    assert generate_variants("11387654321") == ["11387654321", "5511387654321"]


def test_formatting_is_stripped_before_variants() -> None:
    assert generate_variants("+55 (11) 98765-4321") == ["5511987654321", "551187654321"]


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "--"])
def test_inputs_without_digits_have_no_variants(raw) -> None:
    assert generate_variants(raw) == []


def test_other_lengths_only_return_the_cleaned_number() -> None:
    assert generate_variants("14155550123") == ["14155550123", "5514155550123"]
    assert generate_variants("442071838750") == ["442071838750"]


def test_variants_are_symmetric_between_12_and_13_digit_forms() -> None:
    for thirteen in ["5521912345678", "5585998887766", "5511900000000"]:
        twelve = thirteen[:4] + thirteen[5:]
        assert twelve in generate_variants(thirteen)
        assert thirteen in generate_variants(twelve)


def test_clean_phone_accepts_ints_and_rejects_other_types() -> None:
    assert clean_phone(5511987654321) == "5511987654321"
    assert clean_phone("(11) 9 8765-4321") == "11987654321"
    assert clean_phone(True) is None
    assert clean_phone(["5511987654321"]) is None
    assert clean_phone("n/a") is None


def test_strip_chat_suffix() -> None:
    assert strip_chat_suffix("5511987654321@c.us") == "5511987654321"
    assert strip_chat_suffix("5511987654321@s.whatsapp.net") == "5511987654321"
    assert strip_chat_suffix(None) is None
