"""Core domain logic for the relay client.

``executor_relay.core.pipeline`` depends on the config package and is
imported directly rather than re-exported here.
"""

from .addresses import ChainFamily, UniversalAddress, derive_account, from_universal, to_universal
from .attestations import Attestation, AttestationPoller, parse_vaa
from .peers import PeerRegistry, PeerRole
from .quotes import QuoteClient, SignedQuote, decode_payee, payment_amount
from .relay import RelayInstructions, RelayRequest, build_request, encode_relay_instructions
from .sequence import SequenceTracker
from .status import DeliveryOutcome, DeliveryStatus, RelayStatusPoller
from .submitter import SubmissionHandle

__all__ = [
    "Attestation",
    "AttestationPoller",
    "ChainFamily",
    "DeliveryOutcome",
    "DeliveryStatus",
    "PeerRegistry",
    "PeerRole",
    "QuoteClient",
    "RelayInstructions",
    "RelayRequest",
    "RelayStatusPoller",
    "SequenceTracker",
    "SignedQuote",
    "SubmissionHandle",
    "UniversalAddress",
    "build_request",
    "decode_payee",
    "derive_account",
    "encode_relay_instructions",
    "from_universal",
    "parse_vaa",
    "payment_amount",
    "to_universal",
]
