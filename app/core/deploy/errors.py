# -----------------------------------------------------------------------------
# DEPLOY ERRORS
# Call-level failures. Per-dataset problems are not exceptions, they travel as
# ValidationError values inside ValidationResult (see app.core.schemas).
# -----------------------------------------------------------------------------

from typing import List


class DeployError(Exception):
    """Base class for failures that abort a whole call."""


class OrganizationNotFound(DeployError):
    def __init__(self, user_id):
        super().__init__(f"No organization found for user {user_id}")
        self.user_id = user_id


class DeployForbidden(DeployError):
    """Caller lacks the workspace_admin/data_admin role. Never retried."""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class SchemaProviderError(DeployError):
    """Credentials could not be resolved or the warehouse could not be read."""


class PermissionReconciliationError(DeployError):
    def __init__(self, failures: List[BaseException]):
        self.failures = failures
        details = "; ".join(f"{type(f).__name__}: {f}" for f in failures)
        super().__init__(f"Dataset permission update failed: {details}")
