"""Tests for ISO country code lookup."""

from countries import get_country_by_iso


class TestGetCountryByIso:

    def test_alpha_2(self):
        assert get_country_by_iso("US") == "United States"

    def test_alpha_3(self):
        assert get_country_by_iso("CZE") == "Czechia"

    def test_lowercase_code(self):
        assert get_country_by_iso("fr") == "France"

    def test_common_name_preferred(self):
        assert get_country_by_iso("TW") == "Taiwan"

    def test_unknown_code(self):
        assert get_country_by_iso("ZZ") is None

    def test_empty(self):
        assert get_country_by_iso("") is None
        assert get_country_by_iso(None) is None

    def test_bad_length(self):
        assert get_country_by_iso("USAA") is None
