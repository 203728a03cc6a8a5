"""Error taxonomy for the ingestion pipeline."""
from typing import Optional


class PaySyncError(Exception):
    """Base class for all pipeline errors."""


class MalformedSession(PaySyncError):
    """A captured cURL command could not be parsed."""


class CredentialsExpired(PaySyncError):
    """The provider answered with its login page instead of content."""

    def __init__(self, provider: str, detail: str = ""):
        self.provider = provider
        message = f"{provider} credentials expired, refresh them from a new browser capture"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class UpstreamError(PaySyncError):
    """Provider returned a non-2xx status."""

    def __init__(self, status: int, url: str = ""):
        self.status = status
        self.url = url
        super().__init__(f"HTTP {status}" + (f" for {url}" if url else ""))


class BuildIdNotFound(PaySyncError):
    """No build identifier pattern matched the provider HTML."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"build id not found in {provider} HTML")


class MissingContext(PaySyncError):
    """A provider lookup needs a context key that was not supplied."""

    def __init__(self, provider: str, placeholder: str = "orderId"):
        self.provider = provider
        self.placeholder = placeholder
        super().__init__(f"{provider} build id lookup requires {placeholder}")


class UnsupportedOperation(PaySyncError):
    """No URL template or configuration exists for this provider/kind."""

    def __init__(self, provider: str, kind: str, detail: Optional[str] = None):
        self.provider = provider
        self.kind = kind
        message = f"{kind} is not configured for provider {provider!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NormalizationError(PaySyncError):
    """A required field is missing from a provider payload."""

    def __init__(self, provider: str, field: str, identifier: str = ""):
        self.provider = provider
        self.field = field
        self.identifier = identifier
        super().__init__(
            f"{provider} payload {identifier or '?'} is missing required field {field!r}"
        )


class CollectionAlreadyRunning(PaySyncError):
    """A collection run is already active for this account/provider."""

    def __init__(self, account_id: str, provider: str):
        self.account_id = account_id
        self.provider = provider
        super().__init__(f"collection already running for {provider} account {account_id}")


class InvalidPayload(PaySyncError):
    """A provider response body was not the JSON document expected."""

    def __init__(self, provider: str, url: str = "", detail: str = ""):
        self.provider = provider
        self.url = url
        message = f"{provider} returned an unreadable payload" + (f" for {url}" if url else "")
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class AccountNotFound(PaySyncError):
    """No account with this id exists in the credential store."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"account {account_id} not found")
