"""
Deposit-to-mint bridge relay.

This package relays ``BridgeRequest`` deposits from a source ledger to
``executeMint`` calls on a destination ledger:
- Event ingestion and decoding
- Confirmation-depth finality with a canonical block check
- Deterministic message identifiers
- Idempotency checks against destination and local state
- Bounded-retry submission
"""

from .clients import DestinationChainClient, SourceChainClient, decode_bridge_request
from .contracts import (
    BRIDGE_REQUEST_SIGNATURE,
    BRIDGE_REQUEST_TOPIC,
    DEST_BRIDGE_ABI,
    SOURCE_BRIDGE_ABI,
)
from .finality import FinalityGate
from .message_id import compute_message_id, message_id_for, pack_message_fields
from .oracle import DestinationOracle
from .relayer import Relayer
from .source import EventSource
from .submitter import SubmissionEngine, mint_call_args
from .types import (
    DepositRecord,
    ObservedDeposit,
    RelayAttempt,
    RelayOutcome,
    RelayResult,
)

__all__ = [
    "BRIDGE_REQUEST_SIGNATURE",
    "BRIDGE_REQUEST_TOPIC",
    "DEST_BRIDGE_ABI",
    "SOURCE_BRIDGE_ABI",
    "DepositRecord",
    "ObservedDeposit",
    "RelayAttempt",
    "RelayOutcome",
    "RelayResult",
    "SourceChainClient",
    "DestinationChainClient",
    "decode_bridge_request",
    "EventSource",
    "FinalityGate",
    "DestinationOracle",
    "SubmissionEngine",
    "mint_call_args",
    "compute_message_id",
    "message_id_for",
    "pack_message_fields",
    "Relayer",
]
