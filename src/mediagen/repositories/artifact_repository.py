"""Persistence layer for uploaded_artifact records."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.db_models import UploadedArtifactModel
from ..exceptions import ensure_found, handle_sqlalchemy_errors
from .task_repository import as_utc


@dataclass(slots=True, frozen=True)
class UploadedArtifact:
    """Immutable record of an artifact re-hosted in object storage."""

    id: str
    task_id: str | None
    source_url: str
    stored_url: str
    storage_key: str
    size_bytes: int
    mime_type: str
    created_at: datetime


class ArtifactRepository:
    """Store metadata about artifacts copied into object storage."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def register(
        self,
        *,
        task_id: str | None,
        source_url: str,
        stored_url: str,
        storage_key: str,
        size_bytes: int,
        mime_type: str,
        created_at: datetime,
    ) -> UploadedArtifact:
        artifact_id = uuid.uuid4().hex
        with handle_sqlalchemy_errors(entity="uploaded_artifact"):
            with self._session_factory() as session:
                session.add(
                    UploadedArtifactModel(
                        id=artifact_id,
                        task_id=task_id,
                        source_url=source_url,
                        stored_url=stored_url,
                        storage_key=storage_key,
                        size_bytes=size_bytes,
                        mime_type=mime_type,
                        created_at=created_at,
                    )
                )
                session.commit()
        return UploadedArtifact(
            id=artifact_id,
            task_id=task_id,
            source_url=source_url,
            stored_url=stored_url,
            storage_key=storage_key,
            size_bytes=size_bytes,
            mime_type=mime_type,
            created_at=created_at,
        )

    def get(self, artifact_id: str) -> UploadedArtifact:
        with handle_sqlalchemy_errors(entity="uploaded_artifact"):
            with self._session_factory() as session:
                model = ensure_found(
                    session.get(UploadedArtifactModel, artifact_id),
                    entity="Artifact",
                    identifier=artifact_id,
                )
                return self._to_domain(model)

    def list_for_task(self, task_id: str) -> list[UploadedArtifact]:
        query = (
            select(UploadedArtifactModel)
            .where(UploadedArtifactModel.task_id == task_id)
            .order_by(UploadedArtifactModel.created_at.asc())
        )
        with handle_sqlalchemy_errors(entity="uploaded_artifact"):
            with self._session_factory() as session:
                return [self._to_domain(row) for row in session.scalars(query).all()]

    @staticmethod
    def _to_domain(model: UploadedArtifactModel) -> UploadedArtifact:
        return UploadedArtifact(
            id=model.id,
            task_id=model.task_id,
            source_url=model.source_url,
            stored_url=model.stored_url,
            storage_key=model.storage_key,
            size_bytes=model.size_bytes,
            mime_type=model.mime_type,
            created_at=as_utc(model.created_at),
        )
