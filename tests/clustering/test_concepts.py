"""Tests for keyword concept extraction and life-domain tagging."""

from collections import Counter

from recall.clustering.concepts import (
    categorize_domains,
    extract_concepts,
    tokenize,
    top_terms,
)


class TestTokenize:
    """Tests for tokenize()."""

    def test_lowercases_and_drops_stopwords(self):
        assert tokenize("I think my Career is changing") == ["career", "changing"]

    def test_drops_short_tokens(self):
        assert tokenize("go to an AI lab") == ["lab"]

    def test_strips_possessive(self):
        assert tokenize("my manager's feedback") == ["manager", "feedback"]

    def test_empty_text(self):
        assert tokenize("") == []


class TestTopTerms:
    """Tests for deterministic top-k ranking."""

    def test_ties_broken_alphabetically(self):
        counts = Counter({"zebra": 2, "apple": 2, "mango": 3, "kiwi": 1})
        assert top_terms(counts, 3) == [("mango", 3), ("apple", 2), ("zebra", 2)]

    def test_extract_concepts_is_deterministic(self):
        texts = [
            "career change and new career goals",
            "worried about the career move",
            "career coaching session about goals",
        ]
        first = extract_concepts(texts, k=3)
        assert first == extract_concepts(list(reversed(texts)), k=3)
        assert first[0] == "career"
        assert first[1] == "goals"


class TestCategorizeDomains:
    """Tests for life-domain tagging."""

    def test_maps_terms_to_domains(self):
        domains = categorize_domains(["career", "partner", "sleep"])
        assert domains == ["work", "relationships", "health"]

    def test_substring_matches(self):
        """Inflected forms still map onto their domain."""
        assert categorize_domains(["friendships"]) == ["relationships"]

    def test_no_domain(self):
        assert categorize_domains(["banana"]) == []
