"""
Error types for K3s Envoy.

Platform errors are the kubernetes client's ApiException and are surfaced
unchanged; the helpers here only classify them.
"""

from typing import List

from kubernetes.client.exceptions import ApiException


class ConfigError(Exception):
    """Configuration file could not be loaded or is invalid."""


class NilInfraError(ValueError):
    """The infra IR passed for validation is missing."""

    def __init__(self) -> None:
        super().__init__("infra ir is nil")


class ValidationError(ValueError):
    """One or more IR validation rules were violated.

    All violations are collected in ``errors``; nothing is short-circuited.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        if len(self.errors) == 1:
            message = self.errors[0]
        else:
            message = "[" + ", ".join(self.errors) + "]"
        super().__init__(message)


def is_not_found(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status == 404


def is_conflict(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status == 409


def is_forbidden(err: BaseException) -> bool:
    """Authentication/RBAC failures are configuration errors, not transient ones."""
    return isinstance(err, ApiException) and err.status in (401, 403)


def is_gone(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status == 410


def is_transient(err: BaseException) -> bool:
    """Server-side, throttling and connection failures that are worth retrying."""
    if not isinstance(err, ApiException):
        return False
    return not err.status or err.status == 429 or err.status >= 500
