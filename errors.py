"""
Catalog error kinds.

Core functions raise these; main.py turns them into the
{"success": false, "error": ...} envelope with the matching status code.
"""


class CatalogError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(CatalogError):
    kind = "not_found"
    status_code = 404


class InvalidOperation(CatalogError):
    kind = "invalid_operation"
    status_code = 400


class Conflict(CatalogError):
    # Referential conflicts are reported as 400 with a descriptive message
    kind = "conflict"
    status_code = 400


class ValidationFailed(CatalogError):
    kind = "validation_failed"
    status_code = 400
