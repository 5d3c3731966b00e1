"""
Audit sinks.

An AuditSink delivers one AuditRecord and raises AuditSinkError when it
cannot. JsonlAuditSink validates records and appends them to local JSONL
files with time and size-based rotation and retention cleanup.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Set

import aiofiles
import aiofiles.os

from ..core.exceptions import AuditSinkError, AuditValidationError
from .models import AuditRecord, OperationCategory

logger = logging.getLogger(__name__)


def validate_record(record: AuditRecord) -> None:
    """
    Check the rules a record must satisfy before it is accepted.

    Args:
        record: The audit record

    Raises:
        AuditValidationError: If a rule is violated
    """
    if not any(record.caller_identities.values()):
        raise AuditValidationError("record has no caller identities")
    if not record.operation_categories:
        raise AuditValidationError("record has no operation category")
    if (
        OperationCategory.OTHER in record.operation_categories
        and not record.operation_category_description.strip()
    ):
        raise AuditValidationError(
            "operation_category_description is required when the category is Other"
        )
    if not any(record.target_resources.values()):
        raise AuditValidationError("record has no target resources")
    if not record.caller_access_levels:
        raise AuditValidationError("record has no caller access levels")


class AuditSink(ABC):
    """Destination for audit records."""

    @abstractmethod
    async def send(self, record: AuditRecord) -> None:
        """
        Deliver one record.

        Raises:
            AuditSinkError: If the record was not accepted
        """

    async def close(self) -> None:
        """Release any resources held by the sink."""


class JsonlAuditSink(AuditSink):
    """
    Async audit sink writing JSON Lines with file rotation support.

    Writes audit records to local JSONL files with configurable
    time-based and size-based rotation policies. Supports automatic
    cleanup of old files based on retention settings.

    Attributes:
        log_dir: Directory for audit log files
        rotation_hours: Hours between time-based rotations
        rotation_max_bytes: Maximum file size before rotation
        local_retention_hours: Hours to retain local files
    """

    def __init__(
        self,
        log_dir: str = "logs/audit",
        rotation_hours: int = 1,
        rotation_max_mb: int = 100,
        local_retention_hours: int = 24,
        stream_name: str = "api-audit",
        validate: bool = True,
    ):
        """
        Initialize the JsonlAuditSink.

        Args:
            log_dir: Directory path for audit log files
            rotation_hours: Hours between time-based file rotations
            rotation_max_mb: Maximum file size in MB before rotation
            local_retention_hours: Hours to retain local files before cleanup
            stream_name: Name of the audit stream for filename prefix
            validate: Whether to reject records failing validate_record()
        """
        self.log_dir = Path(log_dir)
        self.rotation_hours = rotation_hours
        self.rotation_max_bytes = rotation_max_mb * 1024 * 1024
        self.local_retention_hours = local_retention_hours
        self.stream_name = stream_name
        self.validate = validate

        # Current file state
        self._current_file: Optional[aiofiles.threadpool.binary.AsyncBufferedIOBase] = None
        self._current_file_path: Optional[Path] = None
        self._current_file_start: Optional[datetime] = None

        self._lock = asyncio.Lock()
        self._cleanup_tasks: Set[asyncio.Task] = set()

        self.log_dir.mkdir(parents=True, exist_ok=True)

    async def send(self, record: AuditRecord) -> None:
        """
        Validate a record and append it to the current file.

        Records are written as JSON Lines (one JSON object per line).

        Args:
            record: The audit record to write

        Raises:
            AuditValidationError: If the record fails validation
            AuditSinkError: If the record could not be written
        """
        if self.validate:
            validate_record(record)

        async with self._lock:
            try:
                await self._ensure_file_open()

                if await self._should_rotate():
                    await self._rotate_file()

                line = record.model_dump_json() + "\n"
                await self._current_file.write(line.encode("utf-8"))
                await self._current_file.flush()

            except OSError as e:
                raise AuditSinkError(f"Failed to write audit record to file: {e}") from e

    async def _ensure_file_open(self) -> None:
        """Open a new file if no file is currently open."""
        if self._current_file is None:
            await self._open_new_file()

    async def _open_new_file(self) -> None:
        """
        Open a new audit log file with timestamped filename.

        Filename format: {stream_name}-{ISO8601_timestamp}.jsonl
        Example: api-audit-2024-01-15T10-30-00.jsonl
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        filename = f"{self.stream_name}-{timestamp}.jsonl"
        self._current_file_path = self.log_dir / filename
        self._current_file = await aiofiles.open(self._current_file_path, mode="ab")
        self._current_file_start = datetime.now(timezone.utc)
        logger.debug(f"Opened new audit log file: {self._current_file_path}")

    async def _should_rotate(self) -> bool:
        """
        Check if the current file should be rotated.

        Rotation occurs when:
        - Time since file creation exceeds rotation_hours
        - File size exceeds rotation_max_bytes

        Returns:
            True if rotation is needed, False otherwise
        """
        if self._current_file_path is None or self._current_file_start is None:
            return False

        elapsed = datetime.now(timezone.utc) - self._current_file_start
        if elapsed >= timedelta(hours=self.rotation_hours):
            logger.debug(f"Time-based rotation triggered after {elapsed}")
            return True

        try:
            stat = await aiofiles.os.stat(self._current_file_path)
            if stat.st_size >= self.rotation_max_bytes:
                logger.debug(f"Size-based rotation triggered at {stat.st_size} bytes")
                return True
        except OSError as e:
            logger.warning(f"Could not check file size: {e}")

        return False

    async def _rotate_file(self) -> None:
        """
        Close the current log file and open a new one.

        Also schedules cleanup of files past the retention period.
        """
        if self._current_file:
            try:
                await self._current_file.close()
                logger.info(f"Rotated audit log file: {self._current_file_path}")
            except OSError as e:
                logger.error(f"Error closing audit log file: {e}")

        self._current_file = None
        self._current_file_path = None
        self._current_file_start = None

        await self._open_new_file()

        task = asyncio.create_task(self._cleanup_old_files())
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_done)

    def _cleanup_done(self, task: asyncio.Task) -> None:
        self._cleanup_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Audit log cleanup failed: {task.exception()}")

    async def _cleanup_old_files(self) -> None:
        """
        Remove audit log files older than the retention period.

        Files are deleted if their modification time is older than
        local_retention_hours from the current time.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=self.local_retention_hours)
        cutoff_timestamp = cutoff.timestamp()

        for file_path in self.log_dir.glob(f"{self.stream_name}-*.jsonl"):
            try:
                if self._current_file_path and file_path == self._current_file_path:
                    continue

                stat = await aiofiles.os.stat(file_path)
                if stat.st_mtime < cutoff_timestamp:
                    await aiofiles.os.remove(file_path)
                    logger.info(f"Cleaned up old audit log file: {file_path}")

            except OSError as e:
                logger.warning(f"Could not clean up file {file_path}: {e}")

    async def close(self) -> None:
        """
        Close the current log file.

        Should be called during application shutdown to ensure
        all data is flushed and the file is properly closed. Pending
        cleanup of expired files is awaited first.
        """
        if self._cleanup_tasks:
            await asyncio.gather(*self._cleanup_tasks, return_exceptions=True)

        async with self._lock:
            if self._current_file:
                try:
                    await self._current_file.close()
                    logger.info(f"Closed audit log file: {self._current_file_path}")
                except OSError as e:
                    logger.error(f"Error closing audit log file: {e}")
                finally:
                    self._current_file = None
                    self._current_file_path = None
                    self._current_file_start = None

    @property
    def current_file_path(self) -> Optional[Path]:
        """Get the path of the current log file."""
        return self._current_file_path

    @property
    def is_open(self) -> bool:
        """Check if a log file is currently open."""
        return self._current_file is not None
