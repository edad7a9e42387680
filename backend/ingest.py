import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence, Tuple

from aggregation import aggregate
from history_parser import ParseError, is_zip_file, parse_history_json, parse_history_zip
from models import FileResult, ListeningEvent, Summary

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = ('.json', '.zip')


def invalid_file_message(filename: str) -> str:
    return f"Invalid JSON format in file: {filename}"


def is_valid_file_type(file_bytes: bytes, filename: str) -> bool:
    """Check if file is a valid ZIP or JSON file."""
    return is_zip_file(file_bytes) or filename.lower().endswith(ACCEPTED_EXTENSIONS)


def expand_uploads(files: Sequence[Tuple[str, bytes]]) -> Tuple[List[Tuple[str, bytes]], List[FileResult]]:
    """
    Split an upload into JSON payloads, unpacking ZIP exports.

    Returns:
        Tuple of (json files to parse, failed file results)
    """
    expanded = []
    failures = []
    for filename, content in files:
        if not is_valid_file_type(content, filename):
            failures.append(FileResult(
                filename=filename,
                error=f"Unsupported file type: {filename}",
            ))
            continue

        if not is_zip_file(content):
            expanded.append((filename, content))
            continue

        try:
            members = parse_history_zip(content, filename)
        except ParseError as e:
            logger.warning("Could not open archive %s: %s", filename, e)
            failures.append(FileResult(filename=filename, error=f"Invalid ZIP archive: {filename}"))
            continue
        if not members:
            failures.append(FileResult(filename=filename, error=f"No JSON files found in archive: {filename}"))
        expanded.extend(members)

    return expanded, failures


def read_file(filename: str, content: bytes) -> FileResult:
    """Parse one file; failures are captured on the result, never raised."""
    try:
        events, invalid = parse_history_json(content)
    except ParseError as e:
        logger.warning("Failed to parse %s: %s", filename, e)
        return FileResult(filename=filename, error=invalid_file_message(filename))

    if invalid:
        logger.info("Skipped %d invalid records in %s", len(invalid), filename)
    return FileResult(filename=filename, events=events, invalid_count=len(invalid))


def read_files(files: Sequence[Tuple[str, bytes]], max_workers: int = 4) -> List[FileResult]:
    """
    Parse every file independently and wait for all of them to settle.

    Args:
        files: (filename, raw bytes) pairs in upload order
        max_workers: Size of the reader pool

    Returns:
        One FileResult per file, in upload order
    """
    if not files:
        return []

    results: List[Optional[FileResult]] = [None] * len(files)
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(files)))) as ex:
        future_to_index = {
            ex.submit(read_file, filename, content): i
            for i, (filename, content) in enumerate(files)
        }
        for fut in as_completed(future_to_index):
            results[future_to_index[fut]] = fut.result()

    return results


def join_results(results: Sequence[FileResult]) -> Tuple[List[ListeningEvent], List[FileResult]]:
    """Concatenate events of successful files; return them with the failures."""
    events = []
    failures = []
    for result in results:
        if result.ok:
            events.extend(result.events)
        else:
            failures.append(result)
    return events, failures


class UploadSession:
    """
    Holds the data of one dashboard session across upload batches.

    Each batch takes a generation token before reading its files. Only the
    batch holding the latest token may commit; older batches are dropped.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._generation = 0
        self.committed_generation = 0
        self.filenames: List[str] = []
        self.events: List[ListeningEvent] = []
        self.summary: Optional[Summary] = None

    def begin_batch(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._generation

    def commit(self, token: int, filenames: List[str], results: Sequence[FileResult]) -> bool:
        """
        Join the batch results and aggregate them once.

        Returns:
            False if a newer batch has started since ``token`` was issued
        """
        events, _ = join_results(results)
        with self._lock:
            if not self.is_current(token):
                logger.warning("Discarding stale upload batch %d (current %d)", token, self._generation)
                return False
            self.summary = aggregate(events)
            self.events = events
            self.filenames = list(filenames)
            self.committed_generation = token

        logger.info("Committed batch %d: %d files, %d events", token, len(filenames), len(events))
        return True
