"""Tests for the ResultAssertions helpers."""

import pytest

from railway import ErrorCode, Result, ResultAssertions

MISSING = Result.failure(ErrorCode.NOT_FOUND, "Secret ops/web-tls not found")


class TestAssertSuccess:
    def test_returns_the_value(self):
        assert ResultAssertions.assert_success(Result.success("web-tls-ca")) == "web-tls-ca"

    def test_failure_is_reported_with_code_and_message(self):
        with pytest.raises(AssertionError, match=r"got Failure\[NOT_FOUND: Secret ops/web-tls"):
            ResultAssertions.assert_success(MISSING)

    def test_context_is_appended(self):
        with pytest.raises(AssertionError, match=r"\(first pass\)"):
            ResultAssertions.assert_success(MISSING, "first pass")


class TestAssertFailure:
    def test_returns_the_description(self):
        assert ResultAssertions.assert_failure(MISSING).code is ErrorCode.NOT_FOUND

    def test_matching_code_passes(self):
        error = ResultAssertions.assert_failure(MISSING, ErrorCode.NOT_FOUND)
        assert "ops/web-tls" in error.message

    def test_other_code_is_reported(self):
        with pytest.raises(AssertionError, match="expected CONFLICT, got Failure"):
            ResultAssertions.assert_failure(MISSING, ErrorCode.CONFLICT)

    def test_success_is_reported(self):
        with pytest.raises(AssertionError, match=r"got Success\[3\]"):
            ResultAssertions.assert_failure(Result.success(3))


class TestAssertFailureMessageContains:
    def test_ignores_case(self):
        ResultAssertions.assert_failure_message_contains(MISSING, "SECRET OPS/web-tls")

    def test_missing_substring_is_reported(self):
        with pytest.raises(AssertionError, match="'configmap' not found"):
            ResultAssertions.assert_failure_message_contains(MISSING, "configmap")

    def test_success_is_reported(self):
        with pytest.raises(AssertionError, match="expected Failure"):
            ResultAssertions.assert_failure_message_contains(Result.success(1), "x")
