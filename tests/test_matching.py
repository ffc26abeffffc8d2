"""Tests for tama.core.matching — tolerant description matching."""

from tama.core.matching import descriptions_match, find_first_match, normalize_description


class TestNormalizeDescription:
    def test_strips_day_tag_with_time(self):
        assert normalize_description("Lili appointment @tuesday 3:00 PM") == "lili appointment"

    def test_strips_bare_day_tag(self):
        assert normalize_description("Gym @tomorrow") == "gym"

    def test_strips_parentheticals(self):
        assert normalize_description("Pay rent (overdue) (important)") == "pay rent"

    def test_folds_curly_apostrophes(self):
        assert normalize_description("Mom’s birthday") == "mom's birthday"

    def test_collapses_whitespace(self):
        assert normalize_description("  call   the\tbank ") == "call the bank"

    def test_none_and_empty(self):
        assert normalize_description(None) == ""
        assert normalize_description("   ") == ""


class TestDescriptionsMatch:
    def test_query_inside_candidate(self):
        assert descriptions_match(
            "Lili has appointment", "Lili has appointment on Tuesday @tuesday 3:00 PM (overdue)",
        )

    def test_candidate_inside_query(self):
        assert descriptions_match("I finally did the laundry thing", "laundry")

    def test_case_and_apostrophes(self):
        assert descriptions_match("MOM'S BIRTHDAY", "call about mom’s birthday")

    def test_unrelated(self):
        assert not descriptions_match("groceries", "call mom")

    def test_empty_never_matches(self):
        assert not descriptions_match("", "call mom")
        assert not descriptions_match("call mom", "")
        assert not descriptions_match("(overdue)", "call mom")


class TestFindFirstMatch:
    def test_returns_first_hit_in_order(self):
        items = ["call mom", "call dad", "buy milk"]
        assert find_first_match("call", items, key=str) == "call mom"

    def test_none_when_no_hit(self):
        assert find_first_match("walk dog", ["call mom"], key=str) is None
