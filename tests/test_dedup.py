from engine.dedup import DuplicateIndex
from engine.models import ExistingContact


def _existing(contact_id: str, phone: str | None, extra_phones: list[str] = ()) -> ExistingContact:
    phones = [{"phone": phone, "type": "primary"}] if phone else []
    phones += [{"phone": p, "type": "secondary"} for p in extra_phones]
    return ExistingContact(id=contact_id, phone=phone, phones=phones)


def test_find_matches_across_ninth_digit_forms() -> None:
    index = DuplicateIndex.build([_existing("c1", "551187654321")])

    assert index.find(["5511987654321"]).id == "c1"
    assert index.find(["11987654321"]).id == "c1"
    assert index.find(["551187654321"]).id == "c1"


def test_find_checks_secondary_phone_entries() -> None:
    index = DuplicateIndex.build([_existing("c1", None, ["5521912345678"])])

    assert index.find([None, "552112345678"]).id == "c1"


def test_first_writer_wins_for_shared_variants() -> None:
    index = DuplicateIndex.build(
        [
            _existing("first", "5511987654321"),
            _existing("second", "551187654321"),
        ]
    )

    assert index.find(["551187654321"]).id == "first"
    assert index.contact_count == 2


def test_find_returns_none_without_match() -> None:
    index = DuplicateIndex.build([_existing("c1", "5511987654321")])

    assert index.find(["5521912345678", None, ""]) is None


def test_verbose_build_indexes_the_same_variants() -> None:
    contacts = [_existing("c1", "5511987654321"), _existing("c2", "1187654321")]

    quiet = DuplicateIndex.build(contacts)
    verbose = DuplicateIndex.build(contacts, verbose=True)

    assert len(quiet) == len(verbose)
