"""
Errors
======
Exception taxonomy for the healing agent.

Only provisioning and clone failures abort a job by raising. The remaining
types name outcomes that adapters report (and log) without raising, and are
used as reasons on the job timeline.
"""


class AgentError(Exception):
    """Base class for all agent errors."""

    status_code = 500


class ValidationError(AgentError):
    """Bad job submission."""

    status_code = 400


class NotFoundError(AgentError):
    """Unknown job identifier."""

    status_code = 404


class ProvisioningError(AgentError):
    """Sandbox image or container could not be created."""


class CloneError(AgentError):
    """Repository could not be cloned into the sandbox."""


class DiagnosisEmptyError(AgentError):
    """Tests failed but no failure could be diagnosed."""


class PatchApplicationFailure(AgentError):
    """A single patch could not be written or committed."""


class PushFailure(AgentError):
    """Branch push was refused or failed."""


class WorkflowGenerationError(AgentError):
    """The pipeline definition could not be synthesized."""
