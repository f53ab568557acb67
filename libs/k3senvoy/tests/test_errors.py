"""Tests for error types and platform error classification."""

import pytest
from kubernetes.client.exceptions import ApiException

from k3senvoy.errors import (
    NilInfraError,
    ValidationError,
    is_conflict,
    is_forbidden,
    is_gone,
    is_not_found,
    is_transient,
)


@pytest.mark.parametrize("status,transient", [
    (None, True),
    (0, True),
    (429, True),
    (500, True),
    (503, True),
    (400, False),
    (404, False),
    (409, False),
    (422, False),
])
def test_is_transient(status, transient):
    assert is_transient(ApiException(status=status)) is transient


def test_classifiers():
    assert is_not_found(ApiException(status=404))
    assert is_conflict(ApiException(status=409))
    assert is_gone(ApiException(status=410))
    assert is_forbidden(ApiException(status=401))
    assert is_forbidden(ApiException(status=403))
    assert not is_transient(ValueError("boom"))


def test_validation_error_message():
    assert str(ValidationError(["name field required"])) == "name field required"
    assert str(ValidationError(["a", "b"])) == "[a, b]"
    assert str(NilInfraError()) == "infra ir is nil"
