"""Tests for client-facing error bodies."""

import pytest

from tokenward.service.errors import (
    CreationFailed,
    DuplicateEmail,
    DuplicateUsername,
    InvalidCredentials,
    InvalidOrExpiredToken,
    MissingToken,
    UserNotFound,
    describe_error,
)
from tokenward.storage.errors import StoreError


@pytest.mark.parametrize(
    "exc, status, code, message",
    [
        (DuplicateUsername(), 409, "conflict", "Username already exists"),
        (DuplicateEmail(), 409, "conflict", "Email already exists"),
        (CreationFailed(), 500, "server_error", "Failed to create user"),
        (InvalidCredentials(), 401, "unauthorized", "Invalid credentials"),
        (MissingToken(), 400, "validation_error", "Refresh token is required"),
        (InvalidOrExpiredToken(), 401, "unauthorized", "Invalid or expired token"),
        (UserNotFound(), 404, "not_found", "User not found"),
    ],
)
def test_named_errors(exc, status, code, message):
    assert exc.status_code == status
    assert describe_error(exc) == {"code": code, "message": message}


def test_store_faults_are_generic():
    body = describe_error(StoreError("connection refused to 10.0.0.5:5432"))

    assert body == {"code": "server_error", "message": "An unexpected error occurred"}
