class LinkError(Exception):
    """Base class for download-link failures."""


class ValidationError(LinkError):
    """Malformed token or missing creation input. Never reaches the store."""


class TokenNotFound(LinkError):
    """Token absent, expired, or never issued; the causes are deliberately indistinguishable."""


class TokenExhausted(LinkError):
    """Token exists but its download allowance is spent."""


class UpstreamUnavailable(LinkError):
    """The token store or the storage backend failed. Safe to retry if raised before redemption."""


class StoreUnavailable(UpstreamUnavailable):
    pass


class StorageUnavailable(UpstreamUnavailable):
    pass
