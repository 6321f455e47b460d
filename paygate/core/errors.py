"""
Error taxonomy of the reconciliation engine.

ValidationError and UpstreamError propagate to the HTTP layer (400 / 500).
"Not found" outcomes are never exceptions: they are regular results with an
explicit status field. PartialProvisioningFailure never leaves the provisioner.
"""
from typing import Any


class PaygateError(Exception):
    """Base class; status_code is the HTTP status the API layer answers with."""

    status_code = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(PaygateError):
    """Missing or malformed input (absent email, bad webhook shape). Safe to show."""

    status_code = 400


class UpstreamError(PaygateError):
    """Processor or identity-provider call failed. Eligible for caller retry."""

    status_code = 500


class AuthenticationError(PaygateError):
    """Invalid, expired or tampered session credential."""

    status_code = 401


class PartialProvisioningFailure(PaygateError):
    """Account exists but the entitlement profile / subscription write failed."""
