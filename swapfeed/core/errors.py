"""Error taxonomy for the swap feed.

None of these are process-fatal. Each one marks the unit of work it
belongs to (a log, a token, a row) as degraded and the batch carries on.
"""


class SwapFeedError(Exception):
    """Base class for swap feed errors."""


class DecodeError(SwapFeedError):
    """A raw log could not be turned into a swap."""


class UnrecognizedEventKind(DecodeError):
    """The log's first topic is not a supported swap signature."""

    def __init__(self, topic: str | None):
        self.topic = topic
        super().__init__(f"Unrecognized swap event topic: {topic}")


class AbiDecodeError(DecodeError):
    """The log data does not match the signature's field layout."""


class PairLookupError(SwapFeedError):
    """The pool's constituent tokens could not be fetched."""


class TokenMetadataError(SwapFeedError):
    """A token's symbol or decimals could not be fetched."""


class MetadataUnavailable(SwapFeedError):
    """Pair or token identity could not be resolved."""

    def __init__(self, address: str, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"Metadata unavailable for {address}: {reason}")


class OracleUnavailable(SwapFeedError):
    """The token price oracle could not be reached."""


class ReferenceRateUnavailable(SwapFeedError):
    """The native asset USD rate could not be fetched."""


class PersistenceWriteError(SwapFeedError):
    """A single row could not be written."""
