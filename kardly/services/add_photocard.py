"""
Create a photocard backed by a freshly uploaded image.

The image lives in a remote asset store and the record in SQLite. The two
cannot commit together, so the steps run in a fixed order with one
compensating action:

    VALIDATING -> UPLOADING -> PERSISTING -> COMMITTED
                                   \\-> FAILED (rollback, delete the upload)

Upload happens before insert so that a failure after upload can be undone
by deleting the remote object. The reverse order would require deleting a
record that someone may already have read.

The write transaction opens only after the upload returns, so a slow store
never holds SQLite's database-wide write lock. References are checked once
before the upload and again inside that transaction, right before the insert.
"""

import logging
import sqlite3
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from kardly.db.connection import ConnectionPool
from kardly.db.models import Photocard, PhotocardRepository
from kardly.errors import KardlyError, PersistError, ReturnCode, UploadFailedError
from kardly.services.asset_store import AssetHandle, AssetStore
from kardly.services.references import References, ReferenceValidator
from kardly.services.uploads import UploadIntent
from kardly.utils import new_id

log = logging.getLogger(__name__)


class WorkflowState:
    VALIDATING = "VALIDATING"
    UPLOADING = "UPLOADING"
    PERSISTING = "PERSISTING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


@dataclass
class PhotocardResult:
    """Terminal outcome of one create call."""
    return_code: str
    message: str
    state: str
    photocard_id: Optional[str] = None
    image_url: Optional[str] = None
    failed_stage: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state == WorkflowState.COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"return_code": self.return_code}
        if self.ok:
            body["photocard_id"] = self.photocard_id
            body["image_url"] = self.image_url
        body["message"] = self.message
        return body


class PhotocardWorkflow:
    """
    Orchestrates validation, upload and insert for one photocard.

    Holds no per-request state; one instance is shared by all request
    threads. Each call borrows its own pooled connection for the length of
    the transaction.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        store: AssetStore,
        validator: Optional[ReferenceValidator] = None,
    ):
        self.pool = pool
        self.store = store
        self.validator = validator or ReferenceValidator()

    def create(self, intent: UploadIntent, user_id: Optional[str] = None) -> PhotocardResult:
        """Run the workflow to a terminal state and classify the outcome."""
        run = _Run()
        try:
            card = self._run(intent, user_id, run)
        except KardlyError as e:
            log.info("Photocard not created (%s during %s): %s", e.return_code, run.state, e.message)
            return PhotocardResult(
                return_code=e.return_code,
                message=e.message,
                state=WorkflowState.FAILED,
                failed_stage=run.state,
            )
        except Exception:
            log.exception("Unexpected error adding photocard during %s", run.state)
            return PhotocardResult(
                return_code=ReturnCode.SERVER_ERROR,
                message="Failed to add photocard",
                state=WorkflowState.FAILED,
                failed_stage=run.state,
            )

        return PhotocardResult(
            return_code=ReturnCode.SUCCESS,
            message="Photocard added successfully",
            state=WorkflowState.COMMITTED,
            photocard_id=card.id,
            image_url=card.image_url,
        )

    def _run(self, intent: UploadIntent, user_id: Optional[str], run: "_Run") -> Photocard:
        conn = self.pool.acquire()
        asset: Optional[AssetHandle] = None
        try:
            run.state = WorkflowState.VALIDATING
            refs = self.validator.validate(conn, intent.references)

            run.state = WorkflowState.UPLOADING
            asset = self._upload(intent)

            # The write lock is taken only after the upload returns. The
            # pre-check above may be stale by now, so validate again under
            # the lock the insert will hold.
            run.state = WorkflowState.PERSISTING
            self._begin(conn)
            refs = self.validator.validate(conn, refs)
            card = self._persist(conn, refs, asset, user_id, run)
            run.state = WorkflowState.COMMITTED
            return card
        finally:
            # Also reached on KeyboardInterrupt / SystemExit: cleanup is not
            # skipped because the caller went away.
            if not run.committed:
                self._rollback(conn)
                if asset is not None and not self._is_attached(conn, run.photocard_id):
                    self._compensate(asset)
            self.pool.release(conn)

    def _upload(self, intent: UploadIntent) -> AssetHandle:
        """Stage the payload in a temp file and hand it to the store."""
        suffix = Path(intent.filename).suffix.lower()
        with tempfile.NamedTemporaryFile(prefix="photocard_", suffix=suffix) as staged:
            staged.write(intent.data)
            staged.flush()
            staged.seek(0)
            try:
                asset = self.store.upload(staged, intent.content_type, intent.filename)
            except Exception as e:
                log.error("Asset upload failed for %s: %s", intent.filename, e)
                raise UploadFailedError("Failed to upload image") from e
        log.debug("Uploaded %s as %s", intent.filename, asset.handle)
        return asset

    def _begin(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            log.error("Could not open write transaction: %s", e)
            raise PersistError("Failed to save photocard") from e

    def _persist(
        self,
        conn: sqlite3.Connection,
        refs: References,
        asset: AssetHandle,
        user_id: Optional[str],
        run: "_Run",
    ) -> Photocard:
        run.photocard_id = new_id()
        try:
            card = PhotocardRepository(conn).add(Photocard(
                id=run.photocard_id,
                image_url=asset.url,
                user_id=user_id,
                group_id=refs.group_id,
                member_id=refs.member_id,
                album_id=refs.album_id,
                asset_handle=asset.handle,
            ))
            conn.commit()
            run.committed = True
        except sqlite3.Error as e:
            log.error("Saving photocard for asset %s failed: %s", asset.handle, e)
            raise PersistError("Failed to save photocard") from e
        return card

    def _rollback(self, conn: sqlite3.Connection) -> None:
        try:
            if conn.in_transaction:
                conn.rollback()
        except sqlite3.Error as e:
            log.error("Rollback failed: %s", e)

    def _is_attached(self, conn: sqlite3.Connection, photocard_id: Optional[str]) -> bool:
        """True if the record was committed even though the run did not finish."""
        if photocard_id is None:
            return False
        try:
            row = conn.execute(
                "SELECT 1 FROM photocards WHERE id = ?", (photocard_id,)
            ).fetchone()
        except sqlite3.Error as e:
            log.error("Could not check photocard %s before cleanup: %s", photocard_id, e)
            return False
        if row is not None:
            log.warning("Photocard %s committed before interruption; keeping its asset", photocard_id)
        return row is not None

    def _compensate(self, asset: AssetHandle) -> None:
        """Delete an upload that no committed record points at."""
        try:
            self.store.delete(asset.handle)
        except Exception as e:
            # Orphan stays in the remote store; the caller's outcome is unchanged.
            log.error("Could not delete orphaned asset %s (%s): %s", asset.handle, asset.url, e)
            return
        log.info("Deleted orphaned asset %s after failed insert", asset.handle)


@dataclass
class _Run:
    state: str = WorkflowState.VALIDATING
    photocard_id: Optional[str] = None
    committed: bool = False
