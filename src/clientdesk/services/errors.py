"""Error taxonomy of the chat core.

`PersistenceError` and `UploadError` propagate to callers. `ResolutionError`
and `SubscriptionError` are recovered where they occur and only ever reach a
caller as data (a fallback result or a connection notice).
"""


class ChatError(RuntimeError):
    """Base exception for chat failures."""


class PersistenceError(ChatError):
    """A message store read or write failed."""


class UploadError(ChatError):
    """An attachment could not be stored."""


class InvalidAttachmentError(UploadError):
    """The attachment was rejected before reaching storage."""


class ResolutionError(ChatError):
    """Sender identities could not be looked up."""


class SubscriptionError(ChatError):
    """A realtime channel was not established or was dropped."""
