"""Error taxonomy for the relay client."""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base class for all relay client failures."""


class AddressWidthError(RelayError, ValueError):
    """Raised when an address does not match the width of any known chain family."""


class SequenceRaceDetected(RelayError):
    """Raised when the sequence read back after a publish differs from the prediction.

    ``committed`` tells whether our own publish landed. When it did, submitters
    attach the submission as ``handle``; when it did not, nothing was spent and
    the publish can be retried against a fresh prediction.
    """

    def __init__(
        self,
        predicted: int,
        observed: int,
        *,
        tx_id: Optional[str] = None,
        committed: bool = True,
    ) -> None:
        super().__init__(f"Sequence race detected: predicted {predicted}, observed {observed}")
        self.predicted = predicted
        self.observed = observed
        self.tx_id = tx_id
        self.committed = committed
        self.handle: object = None


class MessageTooLarge(RelayError, ValueError):
    """Raised when a greeting exceeds what the message program accepts."""


class QuoteUnavailable(RelayError, ConnectionError):
    """Raised when the relay service cannot be reached or refuses to quote."""


class QuoteMalformed(RelayError, ValueError):
    """Raised when a quote response does not parse to the expected tagged format."""


class QuoteExpired(RelayError):
    """Raised when a relay request is rejected because its quote has expired."""


class InvalidPayeeFormat(RelayError, ValueError):
    """Raised when a quote's payee field is not a valid identity for the paying chain."""


class UnknownPeer(RelayError):
    """Raised when a message source or destination is not a registered peer."""


class PeerRoleConflict(RelayError, ValueError):
    """Raised when one shared peer record is asked to hold two different identities."""


class TransactionFailed(RelayError):
    """Raised when a submitted transaction is rejected or fails on-chain."""

    def __init__(self, message: str, *, signature: Optional[str] = None, error: object = None) -> None:
        super().__init__(message)
        self.signature = signature
        self.error = error


class RelaySimulationFailed(RelayError):
    """The relay service reported a failed delivery; ``cause`` is passed through verbatim."""

    def __init__(self, cause: str) -> None:
        super().__init__(f"Relay failed: {cause}")
        self.cause = cause


class RelayUnderpaid(RelayError):
    """The relay service reported that the payment did not cover the quote."""


class DeliveryTimedOut(RelayError):
    """No terminal delivery status was observed before the deadline."""


class AttestationNotPosted(RelayError):
    """The attestation has not been verified and posted to the destination core bridge."""


__all__ = [
    "AddressWidthError",
    "AttestationNotPosted",
    "DeliveryTimedOut",
    "InvalidPayeeFormat",
    "MessageTooLarge",
    "PeerRoleConflict",
    "QuoteExpired",
    "QuoteMalformed",
    "QuoteUnavailable",
    "RelayError",
    "RelaySimulationFailed",
    "RelayUnderpaid",
    "SequenceRaceDetected",
    "TransactionFailed",
    "UnknownPeer",
]
