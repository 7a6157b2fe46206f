# =============================================================================
# Merge Engine
# =============================================================================
# Folds a batch of machine features into a floor's editor document with an
# optimistic-concurrency loop:
#   1. read (or lazily create) the document and capture its version token
#   2. compute the merged candidate from that snapshot
#   3. conditionally write it; on a version conflict re-read and start over
# Human edits made between read and write are never overwritten because the
# candidate is always rebuilt from the latest snapshot.
# =============================================================================

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from libs.detections import MACHINE_OWNED_TYPES, count_features
from libs.editor_merge import filter_incoming, merge_machine_features, new_editor_document
from libs.errors import (
    ConcurrencyExhaustedError,
    ConflictOnCreateError,
    NotFoundError,
    VersionConflictError,
)
from libs.legacy_export import export_legacy_editor_json
from libs.models import (
    SYSTEM_ACTOR,
    ChangeEvent,
    ChangeEventType,
    DetectionTotals,
    DocumentKey,
    EditorDocument,
    Feature,
    UnownedFeaturePolicy,
    change_event_id,
)

__all__ = ["MergeEngine", "MergeRequest", "MergeResult", "DEFAULT_MERGE_ATTEMPTS"]

logger = logging.getLogger(__name__)

DEFAULT_MERGE_ATTEMPTS = 4


@dataclass(frozen=True)
class MergeRequest:
    """Run metadata recorded on the document and its change events."""

    run_id: str
    attempt: int = 1
    model: Optional[str] = None


@dataclass
class MergeResult:
    document_id: str
    floor_key: str
    counts: DetectionTotals
    version: str
    attempts: int
    created: bool = False
    legacy_export: Optional[dict] = field(default=None)

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "floor_key": self.floor_key,
            "counts": dict(self.counts),
            "version": self.version,
            "attempts": self.attempts,
            "created": self.created,
        }


class MergeEngine:
    """
    Conditional-write merge loop over an editor document store.

    The store must provide read_editor_doc, create_editor_doc,
    write_editor_doc and append_event (see libs.orchestration.collaborators).
    A blob store is only needed when the legacy JSON export is enabled.
    """

    def __init__(
        self,
        store,
        *,
        blob_store=None,
        max_attempts: int = DEFAULT_MERGE_ATTEMPTS,
        unowned_policy: UnownedFeaturePolicy = UnownedFeaturePolicy.PASS_THROUGH,
        owned_types: frozenset = MACHINE_OWNED_TYPES,
        write_legacy_json: bool = False,
        write_history: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.blob_store = blob_store
        self.max_attempts = max_attempts
        self.unowned_policy = unowned_policy
        self.owned_types = owned_types
        self.write_legacy_json = write_legacy_json
        self.write_history = write_history
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, store, settings, *, blob_store=None, clock=None) -> "MergeEngine":
        return cls(
            store,
            blob_store=blob_store,
            max_attempts=settings.merge_max_attempts,
            unowned_policy=settings.unowned_feature_policy,
            write_legacy_json=settings.write_legacy_editor_json,
            write_history=settings.write_editor_history,
            clock=clock,
        )

    def merge_features(
        self,
        key: DocumentKey,
        incoming: Iterable[Feature],
        request: MergeRequest,
    ) -> MergeResult:
        """
        Merge an incoming feature batch into the document identified by key.

        Raises:
            MissingInputError: Document absent and key lacks basemap dimensions
            InputValidationError: Unowned feature types under the reject policy
            ConcurrencyExhaustedError: Every conditional write hit a conflict
        """
        batch = filter_incoming(incoming, self.unowned_policy, self.owned_types)
        counts = count_features(batch)

        document, version, created = self._read_or_create(key)

        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            candidate = merge_machine_features(
                document,
                batch,
                run_id=request.run_id,
                model=request.model,
                owned_types=self.owned_types,
                now=self._clock(),
            )
            try:
                new_version = self.store.write_editor_doc(candidate, version)
            except VersionConflictError:
                logger.warning(
                    "Editor merge conflict, retry %d/%d (floor_key=%s)",
                    attempts,
                    self.max_attempts,
                    key.floor_key,
                )
                document, version = self.store.read_editor_doc(key.document_id)
                continue

            self._append_events(key, document, candidate, request, counts, created)
            result = MergeResult(
                document_id=candidate.id,
                floor_key=key.floor_key,
                counts=counts,
                version=new_version,
                attempts=attempts,
                created=created,
            )
            if self.write_legacy_json:
                result.legacy_export = self._export_legacy(candidate, counts, request.run_id)
            return result

        raise ConcurrencyExhaustedError(key.floor_key, attempts)

    def _read_or_create(self, key: DocumentKey) -> tuple[EditorDocument, str, bool]:
        try:
            document, version = self.store.read_editor_doc(key.document_id)
            return document, version, False
        except NotFoundError:
            pass

        document = new_editor_document(key, now=self._clock())
        try:
            version = self.store.create_editor_doc(document)
            logger.info("Created editor document %s", document.id)
            return document, version, True
        except ConflictOnCreateError:
            # Another writer created it between our read and create
            document, version = self.store.read_editor_doc(key.document_id)
            return document, version, False

    def _append_events(
        self,
        key: DocumentKey,
        before: EditorDocument,
        after: EditorDocument,
        request: MergeRequest,
        counts: DetectionTotals,
        created: bool,
    ) -> None:
        now = self._clock()
        if created:
            self.store.append_event(
                ChangeEvent(
                    id=change_event_id(key.floor_key, request.run_id, request.attempt, ChangeEventType.INIT.value),
                    document_id=after.id,
                    floor_key=key.floor_key,
                    type=ChangeEventType.INIT,
                    actor=SYSTEM_ACTOR.model_copy(),
                    timestamp=now,
                    payload={},
                    revision_before=None,
                    revision_after=after.revision,
                    run_id=request.run_id,
                )
            )
        self.store.append_event(
            ChangeEvent(
                id=change_event_id(
                    key.floor_key, request.run_id, request.attempt, ChangeEventType.IMPORT_FEATURES.value
                ),
                document_id=after.id,
                floor_key=key.floor_key,
                type=ChangeEventType.IMPORT_FEATURES,
                actor=SYSTEM_ACTOR.model_copy(),
                timestamp=now,
                payload={"runId": request.run_id, "counts": dict(counts)},
                revision_before=before.revision,
                revision_after=after.revision,
                run_id=request.run_id,
            )
        )

    def _export_legacy(self, document: EditorDocument, counts: DetectionTotals, run_id: str) -> Optional[dict]:
        if self.blob_store is None:
            logger.warning("Legacy editor JSON export enabled but no blob store configured")
            return None
        try:
            return export_legacy_editor_json(
                self.blob_store,
                document,
                counts,
                run_id,
                write_history=self.write_history,
                now=self._clock(),
            )
        except Exception as e:
            logger.warning("Legacy editor JSON export failed for %s: %s", document.id, e)
            return None
