"""Relay data types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class RelayOutcome(Enum):
    """How the pipeline finished for one deposit."""

    SKIPPED_WRONG_DESTINATION = "skipped_wrong_destination"
    SKIPPED_REORGED = "skipped_reorged"
    ALREADY_PROCESSED_REMOTE = "already_processed_remote"
    ALREADY_PROCESSED_LOCAL = "already_processed_local"
    SOURCE_MISMATCH = "source_mismatch"
    CLAIM_HELD = "claim_held"
    RELAYED = "relayed"
    ABANDONED = "abandoned"
    FAILED = "failed"


@dataclass(frozen=True)
class DepositRecord:
    """Decoded ``BridgeRequest`` event."""

    sender: str
    recipient: str
    token: str
    amount: int
    src_chain_id: int
    dst_chain_id: int
    nonce: int
    timestamp: int


@dataclass(frozen=True)
class ObservedDeposit:
    """A deposit together with where it was seen on the source ledger."""

    record: DepositRecord
    block_number: int
    transaction_hash: str
    block_hash: Optional[str] = None
    log_index: int = 0

    @property
    def key(self) -> str:
        return f"{self.transaction_hash}:{self.log_index}"


@dataclass
class RelayAttempt:
    """Submission progress for one in-flight message."""

    message_id: str
    attempt_count: int = 0
    last_error: Optional[str] = None
    delays: List[float] = field(default_factory=list)
    transaction_hash: Optional[str] = None
    succeeded: bool = False


@dataclass
class RelayResult:
    """Result of running one deposit through the pipeline."""

    outcome: RelayOutcome
    observed: ObservedDeposit
    message_id: Optional[str] = None
    attempt: Optional[RelayAttempt] = None
    error: Optional[str] = None
