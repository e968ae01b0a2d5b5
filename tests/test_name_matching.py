"""Tests for name normalization, tokenization and scoring."""

import pytest

from contractes.services.name_matching import (
    group_display_tokens,
    normalize,
    score,
    surname_pair_compatible,
    surname_pairs,
    tokenize,
)


class TestNormalize:
    """Tests for normalize."""

    def test_strips_accents_and_punctuation(self):
        assert normalize("  Àngels  Puig-Ferrer, S.L. ") == "ANGELS PUIG FERRER S L"

    def test_empty_values(self):
        assert normalize("") == ""
        assert normalize(None) == ""
        assert normalize(" .,- ") == ""

    def test_catalan_characters(self):
        assert normalize("Núria Çaldés l·l") == "NURIA CALDES L L"


class TestTokenize:
    """Tests for tokenize."""

    def test_keeps_first_seen_order_and_dedups(self):
        assert tokenize("Joan Puig joan") == ["JOAN", "PUIG"]

    def test_drops_single_letter_tokens(self):
        assert tokenize("J. Puig") == ["PUIG"]

    def test_caps_token_count(self):
        tokens = tokenize("un dos tres quatre cinc sis set")
        assert tokens == ["UN", "DOS", "TRES", "QUATRE", "CINC", "SIS"]

    def test_no_cap(self):
        assert len(tokenize("un dos tres quatre cinc sis set", max_tokens=None)) == 7

    def test_person_mode_drops_connectors(self):
        assert tokenize("de la Fuente García, Juan", person=True) == ["FUENTE", "GARCIA", "JUAN"]
        assert tokenize("de la Fuente García, Juan") == ["DE", "LA", "FUENTE", "GARCIA", "JUAN"]

    def test_empty_input_yields_no_tokens(self):
        assert tokenize("") == []
        assert tokenize(None) == []
        assert tokenize("- . -") == []


class TestGroupDisplayTokens:
    """Tests for group_display_tokens."""

    def test_groups_multi_word_particles(self):
        words = ["DE", "LA", "FUENTE", "GARCIA", "JUAN"]
        assert group_display_tokens(words) == ["DE LA FUENTE", "GARCIA", "JUAN"]

    def test_groups_van_der(self):
        assert group_display_tokens(["VAN", "DER", "BERG", "JOHANNES"]) == ["VAN DER BERG", "JOHANNES"]

    def test_trailing_particle_stays_alone(self):
        assert group_display_tokens(["GARCIA", "DE"]) == ["GARCIA", "DE"]

    def test_no_particles(self):
        assert group_display_tokens(["LAPORTA", "ESTRUCH", "JOAN"]) == ["LAPORTA", "ESTRUCH", "JOAN"]


class TestScore:
    """Tests for score."""

    def test_same_tokens_any_order(self):
        assert score("JOAN LAPORTA ESTRUCH", "Laporta Estruch, Joan") == 1.0

    def test_partial_overlap_uses_larger_set(self):
        assert score("JOAN LAPORTA", "JOAN LAPORTA ESTRUCH") == pytest.approx(2 / 3)

    def test_symmetric(self):
        a, b = "Ajuntament de Girona", "Consell Comarcal del Gironès"
        assert score(a, b) == score(b, a)

    def test_disjoint_and_empty(self):
        assert score("JOAN PUIG", "MARIA GARCIA") == 0.0
        assert score("", "JOAN") == 0.0
        assert score("JOAN", None) == 0.0

    def test_bounded(self):
        value = score("Ajuntament de Girona", "Ajuntament de Salt")
        assert 0.0 <= value <= 1.0


class TestSurnamePairs:
    """Tests for the surname-pair pre-filter."""

    def test_pairs_from_both_ends(self):
        pairs = surname_pairs("LAPORTA ESTRUCH JOAN")
        assert pairs == {frozenset({"LAPORTA", "ESTRUCH"}), frozenset({"ESTRUCH", "JOAN"})}

    def test_compatible_across_name_order(self):
        assert surname_pair_compatible("LAPORTA ESTRUCH JOAN", "Joan Laporta Estruch") is True

    def test_incompatible_when_no_pair_shared(self):
        assert surname_pair_compatible("LAPORTA ESTRUCH JOAN", "Joan Puig Estruch") is False

    def test_short_target_defers_to_scoring(self):
        assert surname_pair_compatible("PUIG", "Maria Puig Soler") is True
