"""Tests for issuefleet.domain: classification cascade and compatibility."""

from __future__ import annotations

import pytest

from issuefleet.domain import classify, classify_task, domains_compatible, is_valid_domain
from issuefleet.tasks.model import Domain


# ═══════════════════════════════════════════════════════════════════
#  Classification cascade
# ═══════════════════════════════════════════════════════════════════


class TestClassifyTask:
    def test_title_tag_wins_with_full_confidence(self):
        result = classify_task("[Backend] Add rate limiting", labels=["frontend"])
        assert result.domain == Domain.BACKEND
        assert result.confidence == 1.0
        assert result.reasons == ["Title tag: [Backend]"]

    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            ("UI", Domain.FRONTEND),
            ("db", Domain.DATABASE),
            ("QA", Domain.TESTING),
            ("Docs", Domain.DOCUMENTATION),
            ("CI", Domain.INFRASTRUCTURE),
            ("CVE", Domain.SECURITY),
        ],
    )
    def test_title_tag_aliases(self, tag, expected):
        assert classify_task(f"[{tag}] something").domain == expected

    def test_unknown_title_tag_falls_through(self):
        result = classify_task("[Misc] Update README wording")
        assert result.domain == Domain.DOCUMENTATION
        assert result.confidence == 0.5

    def test_labels_second(self):
        result = classify_task("Tidy things up", labels=["good first issue", "API"])
        assert result.domain == Domain.BACKEND
        assert result.confidence == 0.9
        assert result.reasons == ["Label: good first issue, API"]

    def test_file_paths_third(self):
        result = classify_task("Fix crash", "The bug lives in src/components/Header.tsx")
        assert result.domain == Domain.FRONTEND
        assert result.confidence == 0.7
        assert result.reasons == ["File path patterns in body"]

    def test_database_path(self):
        assert classify_task("Tweak", "see src/db/users.schema.ts").domain == Domain.DATABASE

    def test_keywords_last(self):
        result = classify_task("Add OAuth login flow")
        assert result.domain == Domain.BACKEND
        assert result.confidence == 0.5
        assert result.reasons == ["Keyword matching"]

    def test_security_keywords_beat_backend(self):
        # "auth" is a backend word, but the security pattern is checked first.
        assert classify_task("Fix XSS in auth callback").domain == Domain.SECURITY

    def test_database_keywords_beat_frontend(self):
        assert classify_task("Add column for dashboard settings").domain == Domain.DATABASE

    def test_frontend_keywords(self):
        assert classify_task("Make the sidebar responsive").domain == Domain.FRONTEND

    def test_no_indicators(self):
        result = classify_task("Think about it")
        assert result.domain == Domain.UNKNOWN
        assert result.confidence == 0.0
        assert result.reasons == ["No domain indicators found"]

    def test_classify_uses_task_fields(self, make_task):
        task = make_task(1, title="Write pytest fixtures", labels=[])
        assert classify(task).domain == Domain.TESTING


# ═══════════════════════════════════════════════════════════════════
#  Compatibility
# ═══════════════════════════════════════════════════════════════════


class TestDomainsCompatible:
    def test_distinct_domains_compatible(self):
        assert domains_compatible(Domain.BACKEND, Domain.FRONTEND)
        assert domains_compatible(Domain.TESTING, Domain.DOCUMENTATION)

    def test_same_domain_incompatible(self):
        assert not domains_compatible(Domain.BACKEND, Domain.BACKEND)

    @pytest.mark.parametrize("other", list(Domain))
    def test_unknown_incompatible_with_everything(self, other):
        assert not domains_compatible(Domain.UNKNOWN, other)
        assert not domains_compatible(other, Domain.UNKNOWN)

    @pytest.mark.parametrize("other", list(Domain))
    def test_database_incompatible_with_everything(self, other):
        assert not domains_compatible(Domain.DATABASE, other)
        assert not domains_compatible(other, Domain.DATABASE)

    def test_symmetric(self):
        for a in Domain:
            for b in Domain:
                assert domains_compatible(a, b) == domains_compatible(b, a)


def test_is_valid_domain():
    assert is_valid_domain("backend")
    assert is_valid_domain("unknown")
    assert not is_valid_domain("Backend")
    assert not is_valid_domain("mobile")
