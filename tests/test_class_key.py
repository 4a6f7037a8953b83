import pytest

from app.core.class_key import (
    YEAR_SEMESTERS,
    build_key,
    build_key_from,
    normalize_semester,
    normalize_year,
    parse_canonical_string,
    to_canonical_string,
)
from app.core.enums import SectionCode, YearLevel
from app.core.exceptions import InvalidClassCoordinate, InvalidYearSemesterCombination


def test_canonical_string_format() -> None:
    key = build_key("2023-2027", "2nd Year", 3, "A", "CSE")
    assert to_canonical_string(key) == "2023-2027_2nd Year_Sem 3_A"
    assert key.class_id == "2023-2027_2nd Year_Sem 3_A"
    assert key.display == "2nd Year | Semester 3 | Section A"


@pytest.mark.parametrize("value", ["2", "2nd", "2nd Year", " 2ND  year ", 2, YearLevel.SECOND])
def test_normalize_year_variants(value) -> None:
    assert normalize_year(value) == YearLevel.SECOND


@pytest.mark.parametrize("value", ["5", "fifth", "", None, True, "2nd semester"])
def test_normalize_year_rejects(value) -> None:
    with pytest.raises(InvalidClassCoordinate):
        normalize_year(value)


@pytest.mark.parametrize("value", [3, "3", "Sem 3", "sem3", "Semester 3", " SEM 3 "])
def test_normalize_semester_variants(value) -> None:
    assert normalize_semester(value) == 3


@pytest.mark.parametrize("value", [0, 9, "Sem 9", "third", None, False, "3.5"])
def test_normalize_semester_rejects(value) -> None:
    with pytest.raises(InvalidClassCoordinate):
        normalize_semester(value)


def test_year_semester_combination_enforced() -> None:
    with pytest.raises(InvalidYearSemesterCombination) as exc:
        build_key("2023-2027", "2nd Year", 5, "A", "CSE")
    assert exc.value.valid_semesters == [3, 4]
    assert exc.value.status_code == 400


@pytest.mark.parametrize(
    "batch,section,department",
    [
        ("2023", "A", "CSE"),
        ("23-27", "A", "CSE"),
        ("2023-2027", "D", "CSE"),
        ("2023-2027", "A", "Physics"),
    ],
)
def test_build_key_rejects_bad_coordinates(batch, section, department) -> None:
    with pytest.raises(InvalidClassCoordinate):
        build_key(batch, "1st Year", 1, section, department)


def test_equal_after_normalization() -> None:
    a = build_key("2024-2028", "1", "Sem 1", "b", "cse")
    b = build_key("2024-2028", "1st Year", 1, "B", "CSE")
    assert a == b
    assert hash(a) == hash(b)
    assert a.section == SectionCode.B
    assert a.department == "CSE"


def test_parse_round_trip_over_all_valid_combinations() -> None:
    for year, semesters in YEAR_SEMESTERS.items():
        for semester in semesters:
            for section in SectionCode:
                key = build_key("2022-2026", year, semester, section, "IT")
                assert parse_canonical_string(to_canonical_string(key), "IT") == key


def test_parse_rejects_malformed() -> None:
    with pytest.raises(InvalidClassCoordinate):
        parse_canonical_string("2023-2027-2nd Year-3-A", "CSE")
    with pytest.raises(InvalidYearSemesterCombination):
        parse_canonical_string("2023-2027_2nd Year_Sem 7_A", "CSE")


def test_key_is_immutable() -> None:
    key = build_key("2023-2027", "2nd Year", 3, "A", "CSE")
    with pytest.raises(Exception):
        key.semester = 4


def test_build_key_from_mapping() -> None:
    key = build_key_from({"batch": "2023-2027", "year": "3rd", "semester": "Sem 5", "section": "C"}, "ECE")
    assert key.class_id == "2023-2027_3rd Year_Sem 5_C"
    assert key.department == "ECE"
