import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .errors import ConsistencyError
from .filesystem import FileSystem
from .lock import LOCK_DIRECTORY, REGISTRY_NAME, LockedOperation, LockStore
from .records import DEFAULT_LEASE_SECONDS, ExpirationPolicy, LockRecord, decode_lock_record
from .recovery import recover
from .utils import record_pattern

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    UNLOCKED = 'unlocked'
    SKIPPED = 'skipped'
    REPAIRED = 'repaired'
    FAILED = 'failed'


@dataclass
class RecoveryOutcome:
    """Disposition of one locked operation in a run"""
    operation_id: str
    status: OutcomeStatus
    record_path: Optional[str] = None
    elapsed_ms: float = 0.0
    error: Optional[Exception] = None


@dataclass
class FsckReport:
    outcomes: List[RecoveryOutcome] = field(default_factory=list)

    def add(self, outcome: RecoveryOutcome):
        self.outcomes.append(outcome)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def failed(self) -> List[RecoveryOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == OutcomeStatus.FAILED]


class Fsck:
    """Finds abandoned cooperative-locking operations in a bucket and rolls them forward"""

    def __init__(self,
                 fs: FileSystem,
                 lock_store: LockStore,
                 lease_seconds: int = DEFAULT_LEASE_SECONDS,
                 lock_directory: str = LOCK_DIRECTORY,
                 clock: Callable[[], float] = time.time,
                 progress_callback: Optional[Callable[[OutcomeStatus, str], None]] = None):
        self.fs = fs
        self.lock_store = lock_store
        self.expiration = ExpirationPolicy(lease_seconds)
        self.lock_directory = lock_directory.strip('/') + '/'
        self.clock = clock
        self.progress_callback = progress_callback or (lambda status, op_id: None)

    def run(self) -> FsckReport:
        """Perform one enumerate-and-recover pass"""
        report = FsckReport()
        # every lease is judged against the time the run started
        now = self.clock()

        locked_operations = self.lock_store.list_locked_operations()
        if not locked_operations:
            logger.info("No expired operation locks")
            return report

        expired: List[LockRecord] = []
        for operation in locked_operations:
            try:
                record = self._classify(operation, now, report)
            except Exception as e:
                logger.exception(f"Operation {operation.operation_id} could not be classified: {e}")
                self._finish(report, RecoveryOutcome(operation.operation_id, OutcomeStatus.FAILED, error=e))
                continue
            if record is not None:
                expired.append(record)

        for record in expired:
            self._finish(report, self._recover(record))

        return report

    def find_record(self, operation_id: str) -> Optional[str]:
        """Return the lock record path of an operation, or None if it was never written"""
        registry_key = self.lock_directory + REGISTRY_NAME
        matches = [
            path for path in self.fs.glob(record_pattern(self.lock_directory, operation_id))
            if path != registry_key
        ]
        if len(matches) > 1:
            raise ConsistencyError(
                f"operation {operation_id} should not have more than one lock file: {matches}"
            )
        return matches[0] if matches else None

    def _classify(self, operation: LockedOperation, now: float, report: FsckReport) -> Optional[LockRecord]:
        """Resolve the operation's record; returns it only when it needs recovery"""
        path = self.find_record(operation.operation_id)

        if path is None:
            logger.info(
                f"Operation {operation.operation_id} for {sorted(operation.resources)} resources "
                f"locked at {operation.lock_epoch_seconds} doesn't have lock file, unlocking"
            )
            self.lock_store.unlock_resources(operation.operation_id, *sorted(operation.resources))
            self._finish(report, RecoveryOutcome(operation.operation_id, OutcomeStatus.UNLOCKED))
            return None

        record = decode_lock_record(path, self.fs.open_for_read(path), operation_id=operation.operation_id)
        if self.expiration.is_expired(record.lock_epoch_seconds, now):
            logger.info(f"Operation {path} expired.")
            return record

        logger.info(f"Operation {path} not expired.")
        self._finish(report, RecoveryOutcome(operation.operation_id, OutcomeStatus.SKIPPED, record_path=path))
        return None

    def _recover(self, record: LockRecord) -> RecoveryOutcome:
        start = time.monotonic()
        try:
            recover(record, self.fs, self.lock_store)
        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(f"Operation {record.path} failed to roll forward in {elapsed_ms:.0f}ms")
            return RecoveryOutcome(record.operation_id, OutcomeStatus.FAILED, record.path, elapsed_ms, e)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(f"Operation {record.path} successfully rolled forward in {elapsed_ms:.0f}ms")
        return RecoveryOutcome(record.operation_id, OutcomeStatus.REPAIRED, record.path, elapsed_ms)

    def _finish(self, report: FsckReport, outcome: RecoveryOutcome):
        report.add(outcome)
        self.progress_callback(outcome.status, outcome.operation_id)
