import pytest

from rekky.etl import name_similarity as ns


def test_levenshtein_distance_counts_edits():
    assert ns.levenshtein_distance("kitten", "sitting") == 3
    assert ns.levenshtein_distance("", "abc") == 3
    assert ns.levenshtein_distance("same", "same") == 0


def test_calculate_similarity_normalises_case_and_length():
    assert ns.calculate_similarity("John", "Jon") == pytest.approx(0.75)
    assert ns.calculate_similarity("  RAVI ", "ravi") == 1.0
    assert ns.calculate_similarity("", "ravi") == 0.0
    assert ns.calculate_similarity(None, "ravi") == 0.0


@pytest.mark.parametrize(
    "left, right",
    [
        ("John", "Jon"),
        ("Ravi Painter", "Ravi Paintr"),
        ("Ramesh", "Ramesh Kumar"),
        ("A1 Plumbing", "Plumbing Services Pvt Ltd"),
        ("", "ravi"),
    ],
)
def test_calculate_similarity_is_symmetric(left, right):
    assert ns.calculate_similarity(left, right) == ns.calculate_similarity(right, left)


def test_are_names_similar_uses_threshold():
    assert ns.are_names_similar("Jon Smith", "John Smith") is True
    assert ns.are_names_similar("John", "Jon") is False
    assert ns.are_names_similar("John", "Jon", threshold=0.7) is True


def test_generate_name_variations_swaps_and_abbreviates():
    variations = ns.generate_name_variations("Ramesh  Kumar")

    assert "ramesh kumar" in variations
    assert "kumar ramesh" in variations
    assert "ramesh k" in variations
    assert "r kumar" in variations


def test_generate_name_variations_single_token():
    assert ns.generate_name_variations("Mohan") == {"mohan"}


def test_exact_match_after_normalisation():
    result = ns.are_names_likely_same("JOHN   smith", "john smith")

    assert result.is_similar is True
    assert result.confidence == 1.0
    assert result.reasoning == "Exact match"


def test_abbreviated_surname_is_a_variation_match():
    result = ns.are_names_likely_same("Ramesh Kumar", "Ramesh K")

    assert result.is_similar is True
    assert result.confidence == pytest.approx(0.95)
    assert result.reasoning == "Name variation match"


def test_reversed_names_match():
    result = ns.are_names_likely_same("Smith John", "John Smith")

    assert result.is_similar is True
    assert result.confidence == pytest.approx(0.95)


def test_shared_root_token_is_a_partial_match():
    result = ns.are_names_likely_same("Ramesh", "Ramesh Kumar")

    assert result.is_similar is True
    assert result.confidence == pytest.approx(0.90)
    assert result.reasoning == "Partial name match"


def test_close_spelling_reports_similarity():
    result = ns.are_names_likely_same("Jon Smith", "John Smith")

    assert result.is_similar is True
    assert result.confidence == pytest.approx(0.9)
    assert result.reasoning.startswith("Similarity: 90.0%")


def test_unrelated_names_are_not_similar():
    result = ns.are_names_likely_same("John Smith", "Completely Different Name")

    assert result.is_similar is False
    assert result.confidence < ns.SIMILARITY_THRESHOLD


def test_empty_names_are_never_similar():
    result = ns.are_names_likely_same("", "Ravi")

    assert result.is_similar is False
    assert result.confidence == 0.0


def test_non_exact_confidence_is_capped():
    pairs = [("Ramesh Kumar", "Ramesh K"), ("Ramesh", "Ramesh Kumar"), ("Jon Smith", "John Smith")]

    for a, b in pairs:
        assert ns.are_names_likely_same(a, b).confidence <= ns.NON_EXACT_CONFIDENCE_CAP


@pytest.mark.parametrize(
    "name, business, expected",
    [
        ("Ravi Painter", None, "painter"),
        ("Ravi", "Sharma Plumbing Works", "plumber"),
        ("Anil", "Anil Hair Salon", "hair stylist"),
        ("Ramesh", None, None),
    ],
)
def test_extract_service_type(name, business, expected):
    assert ns.extract_service_type(name, business) == expected


def test_validate_service_data_cleans_fields():
    result = ns.validate_service_data(
        {
            "name": "  Ravi Painter ",
            "phone": "+91 98765-43210",
            "email": " Ravi@Example.COM ",
            "website": "ravi.example.com",
            "address": "   ",
            "metadata": {"source": "form"},
        }
    )

    assert result.is_valid is True
    assert result.errors == []
    assert result.cleaned["name"] == "Ravi Painter"
    assert result.cleaned["phone_number"] == "9876543210"
    assert result.cleaned["email"] == "ravi@example.com"
    assert result.cleaned["website"] == "https://ravi.example.com/"
    assert result.cleaned["metadata"] == {"source": "form"}
    assert "address" not in result.cleaned


def test_validate_service_data_collects_every_error():
    result = ns.validate_service_data({"name": "R", "phone_number": "12345"})

    assert result.is_valid is False
    assert result.errors == [
        "Name must be at least 2 characters long",
        "Phone number must be between 10 and 15 digits",
        "Either phone number or email must be provided",
    ]


def test_validate_service_data_rejects_bad_email():
    result = ns.validate_service_data({"name": "Ravi", "email": "not-an-email"})

    assert result.is_valid is False
    assert "Invalid email format" in result.errors
    assert "Either phone number or email must be provided" in result.errors


def test_validate_service_data_accepts_email_only():
    result = ns.validate_service_data({"name": "Ravi", "email": "ravi@example.com"})

    assert result.is_valid is True
    assert "phone_number" not in result.cleaned
