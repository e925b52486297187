"""Background worker for document text extraction.

Polls the documents table for ``pending`` uploads and extracts their text.
The API starts it as a daemon thread (``RUN_WORKER=true``); it can also
run as a separate process, and several workers may run side by side:

    python -m supportdesk.worker
"""
import logging
import sys
import threading
import time
from typing import Optional

from .config import Config
from .db import get_db, init_pool
from .documents import process_document
from .logging_config import setup_logging

logger = logging.getLogger("support.worker")


def claim_next_document() -> Optional[int]:
    """Lock the oldest waiting document and mark it ``processing``.

    Waiting means ``pending``, or ``processing`` for longer than
    WORKER_STALE_AFTER seconds (its worker died mid-extraction).
    Returns its id, or None when nothing is waiting.
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT id, status
                FROM documents
                WHERE is_active = TRUE
                  AND (status = 'pending'
                       OR (status = 'processing'
                           AND processing_started_at < NOW() - make_interval(secs => %s)))
                ORDER BY created_at ASC
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            """, (Config.WORKER_STALE_AFTER,))
            row = cur.fetchone()
            if not row:
                return None

            document_id, status = row
            if status == "processing":
                logger.warning("Reclaiming document %d stuck in processing", document_id)
            cur.execute("""
                UPDATE documents
                SET status = 'processing', processing_started_at = CURRENT_TIMESTAMP
                WHERE id = %s
            """, (document_id,))
        conn.commit()
    return document_id


def process_next_document() -> bool:
    """Claim and process one pending document.

    Returns True if a document was handled (successfully or not), False
    if none was available.
    """
    document_id = claim_next_document()
    if document_id is None:
        return False

    # Extraction runs outside the claiming transaction to avoid long locks
    logger.info("Processing document %d...", document_id)
    try:
        process_document(document_id)
        logger.info("Document %d processed successfully", document_id)
    except Exception as e:
        # process_document already recorded the failure on the row
        logger.error("Document %d failed: %s", document_id, e)
    return True


def background_worker(stop_event: Optional[threading.Event] = None) -> None:
    """Poll for pending documents until *stop_event* is set."""
    logger.info("Background document worker started")
    poll_interval = Config.WORKER_POLL_INTERVAL

    while not (stop_event and stop_event.is_set()):
        try:
            if process_next_document():
                continue
        except Exception as e:
            logger.error("Worker error: %s", e)
        if stop_event:
            stop_event.wait(poll_interval)
        else:
            time.sleep(poll_interval)

    logger.info("Background document worker stopped")


def start_background_worker() -> tuple:
    """Start the worker as a daemon thread; returns (thread, stop_event)."""
    stop_event = threading.Event()
    thread = threading.Thread(
        target=background_worker,
        args=(stop_event,),
        name="document-worker",
        daemon=True,
    )
    thread.start()
    return thread, stop_event


def main():
    """Standalone worker process entry point."""
    setup_logging()
    Config.validate()
    init_pool()

    logger.info("Document processing worker started")
    logger.info("Polling database: %s", Config.PG_CONN.split('@')[-1])
    logger.info("Press Ctrl+C to stop")

    try:
        background_worker()
    except KeyboardInterrupt:
        logger.info("Worker stopped")
        sys.exit(0)


if __name__ == "__main__":
    main()
