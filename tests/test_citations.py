"""Tests for the citation enforcer."""

import pytest

from conftest import make_chunk
from ragchat.core.errors import ConfigurationError
from ragchat.core.models.document import SearchResult
from ragchat.core.services.citation_service import CitationEnforcer, source_markers


def results_for(*paths: str) -> list[SearchResult]:
    return [
        SearchResult(chunk=make_chunk(f"content of {p}", p, i), similarity=0.8, rank=i)
        for i, p in enumerate(paths, 1)
    ]


FULL_ANSWER = """The retry policy backs off exponentially [Source 1].
It is configured in RetryPolicy.swift [Source 2]:

```swift
let policy = RetryPolicy(maxAttempts: 3)
```

Sources:
[1] architecture.md - overview of networking
[2] RetryPolicy.swift - retry implementation"""


class TestValidate:

    def test_all_checks_pass(self):
        results = results_for("docs/architecture.md", "Sources/RetryPolicy.swift")
        validation = CitationEnforcer().validate(FULL_ANSWER, results)

        assert validation.has_source_markers
        assert validation.has_sources_section
        assert validation.has_file_references
        assert validation.has_code_blocks
        assert validation.code_blocks_required
        assert validation.citation_count == 2
        assert validation.score == 1.0
        assert validation.is_valid

    def test_no_checks_pass(self):
        results = results_for("docs/architecture.md", "Sources/RetryPolicy.swift")
        validation = CitationEnforcer().validate("It just works, trust me.", results)

        assert validation.score == 0.0
        assert not validation.is_valid
        assert validation.citation_count == 0

    def test_empty_context_is_valid(self):
        validation = CitationEnforcer().validate("I do not know.", [])
        assert validation.score == 1.0
        assert validation.is_valid

    def test_code_check_passes_without_source_chunks(self):
        results = results_for("docs/guide.md")
        answer = "Install it with pip [1].\n\nSources:\n[1] guide.md - setup"
        validation = CitationEnforcer().validate(answer, results)

        assert not validation.has_code_blocks
        assert not validation.code_blocks_required
        assert validation.score == 1.0

    def test_missing_code_block_costs_a_quarter(self):
        results = results_for("Sources/RetryPolicy.swift")
        answer = "RetryPolicy retries three times [Source 1].\n\nSources:\n1. RetryPolicy.swift"
        validation = CitationEnforcer().validate(answer, results)

        assert validation.score == pytest.approx(0.75)
        assert not validation.is_valid

    def test_pass_threshold(self):
        results = results_for("Sources/RetryPolicy.swift")
        answer = "RetryPolicy retries three times [Source 1].\n\nSources:\n1. RetryPolicy.swift"
        assert CitationEnforcer(pass_threshold=0.75).validate(answer, results).is_valid

    def test_out_of_range_markers_do_not_count(self):
        results = results_for("docs/a.md", "docs/b.md")
        validation = CitationEnforcer().validate("Claim [Source 3] and [0].", results)
        assert not validation.has_source_markers
        assert validation.citation_count == 0

    def test_sources_header_needs_entries(self):
        results = results_for("docs/a.md")
        validation = CitationEnforcer().validate("Fact [1] from a.md.\n\nSources:\n", results)
        assert not validation.has_sources_section

    @pytest.mark.parametrize(
        "header",
        ["Sources:", "## Sources", "**Sources:**", "Источники:"],
    )
    def test_sources_header_variants(self, header):
        results = results_for("docs/a.md")
        answer = f"Fact [1].\n\n{header}\n- a.md"
        assert CitationEnforcer().validate(answer, results).has_sources_section

    @pytest.mark.parametrize(
        "sources_line",
        [
            "Sources: [1] guide.md, [2] setup.md",
            "**Sources:** 1. guide.md",
            "Источники: [1] guide.md",
        ],
    )
    def test_sources_on_header_line(self, sources_line):
        results = results_for("docs/guide.md", "docs/setup.md")
        answer = f"Install first [1], then configure [2] per guide.md.\n\n{sources_line}"
        validation = CitationEnforcer().validate(answer, results)

        assert validation.has_sources_section
        assert validation.score == 1.0
        assert validation.is_valid

    def test_sources_word_in_a_sentence_is_not_a_header(self):
        results = results_for("docs/a.md")
        answer = "Fact [1].\n\nSources vary by region\n- a.md"
        assert not CitationEnforcer().validate(answer, results).has_sources_section

    def test_file_reference_is_case_insensitive(self):
        results = results_for("docs/README.md")
        validation = CitationEnforcer().validate("See readme.md for details.", results)
        assert validation.has_file_references

    def test_unclosed_fence_is_not_a_code_block(self):
        results = results_for("src/main.py")
        validation = CitationEnforcer().validate("```python\nprint('hi')", results)
        assert not validation.has_code_blocks

    @pytest.mark.parametrize("threshold", [-0.1, 1.1])
    def test_rejects_bad_threshold(self, threshold):
        with pytest.raises(ConfigurationError):
            CitationEnforcer(threshold)


def test_source_markers_distinct_and_bounded():
    answer = "A [Source 1]. B [1]. C [Source 2]. D [Источник 3]. E [9]."
    assert source_markers(answer, 3) == {1, 2, 3}
    assert source_markers(answer, 1) == {1}
