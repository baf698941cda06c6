from __future__ import annotations


class UKKError(Exception):
    """Base class for errors scoped to a single user action."""

    status_code = 400


class NotFound(UKKError):
    status_code = 404


class Locked(UKKError):
    """Mutation attempted on a finalized score set."""

    status_code = 409


class ValidationError(UKKError):
    status_code = 422


class StoreError(UKKError):
    """The persistence layer failed. Propagated as-is, never retried here."""

    status_code = 503
