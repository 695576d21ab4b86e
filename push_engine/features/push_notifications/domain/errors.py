"""
Error taxonomy for the push notification engine.

Run-level errors (credentials, audience resolution) abort a run before any
send happens. Delivery errors are per-token and never leave the dispatcher.
"""


class CredentialError(Exception):
    """A bearer token for the push gateway could not be minted."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


class AudienceResolutionError(Exception):
    """The Directory could not be read at the start of a run."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class DeliveryError(Exception):
    """A single push to a single device token did not go through."""

    permanent = False

    def __init__(
        self, message: str, reason_code: str | None = None, status_code: int | None = None
    ):
        super().__init__(message)
        self.reason_code = reason_code
        self.status_code = status_code


class TransientDeliveryError(DeliveryError):
    """Network, timeout or server-side failure. The token stays, a later run may succeed."""


class PermanentDeliveryError(DeliveryError):
    """The gateway rejected the token itself. The token must be deleted."""

    permanent = True


class CampaignNotFoundError(Exception):
    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign {campaign_id} not found")
        self.campaign_id = campaign_id


class CampaignStateError(Exception):
    """The campaign is not in a state that allows sending."""

    def __init__(self, campaign_id: str, status: str):
        super().__init__(f"Campaign {campaign_id} is '{status}', expected 'pending'")
        self.campaign_id = campaign_id
        self.status = status
