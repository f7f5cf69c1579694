"""Transactional reads and writes against the matching database.

All driver failures are wrapped as StorageError here; a lead that does not
exist surfaces as NotFoundError.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .errors import NotFoundError, StorageError, ValidationError
from .schemas import CandidateMatch, LeadRecord, MatchRecord, RankedMatch

logger = logging.getLogger(__name__)

DISTANCE_METRICS = ("cosine", "inner_product")


class LeadRepository:
    """Data access for one request, bound to that request's session."""

    def __init__(self, session: AsyncSession, *, distance_metric: str = "cosine") -> None:
        if distance_metric not in DISTANCE_METRICS:
            raise ValueError(f"Unsupported distance metric: {distance_metric}")
        self.session = session
        self.distance_metric = distance_metric

    async def _end_read(self) -> None:
        """Roll back the read transaction, keeping the connection.

        No transaction may stay idle across the model calls that follow.
        """
        try:
            await self.session.rollback()
        except Exception as e:
            logger.warning(f"Failed to end read transaction: {e}")

    async def fetch_lead(self, lead_id: str) -> LeadRecord:
        """Load a lead by primary key.

        Raises:
            NotFoundError: If no lead has this id
            StorageError: On database failure
        """
        try:
            # SELECT * keeps CRM columns this service does not model
            query = text("SELECT * FROM leads WHERE id = :lead_id LIMIT 1")
            result = await self.session.execute(query, {"lead_id": lead_id})
            row = result.mappings().first()
        except Exception as e:
            logger.error(f"Lead lookup failed: {e}")
            raise StorageError("Failed to retrieve lead data", cause=e) from e
        finally:
            await self._end_read()

        if row is None:
            raise NotFoundError(f"Lead with ID {lead_id} not found")

        attributes = {k: v for k, v in row.items() if k != "id"}
        return LeadRecord(id=str(row["id"]), attributes=attributes)

    def _distance(self, embedding: list[float]):
        column = models.StudentEmbedding.embedding
        if self.distance_metric == "inner_product":
            # pgvector <#> returns the negative inner product, so ascending
            # order still puts the most similar rows first
            return column.max_inner_product(embedding)
        return column.cosine_distance(embedding)

    async def nearest_neighbors(self, embedding: list[float], limit: int) -> list[CandidateMatch]:
        """Retrieve the students closest to ``embedding``.

        Args:
            embedding: Query vector
            limit: Number of candidates to retrieve

        Returns:
            Candidates sorted by distance ASC; empty when the table is empty

        Raises:
            ValidationError: If the vector is empty
            StorageError: On database failure
        """
        if not embedding:
            raise ValidationError("Invalid embedding vector provided")

        try:
            distance = self._distance(embedding).label("distance")
            query = (
                select(
                    models.StudentEmbedding.mongo_id,
                    models.StudentEmbedding.text,
                    distance,
                )
                .order_by(distance.asc())
                .limit(limit)
            )
            result = await self.session.execute(query)
            rows = result.all()
        except Exception as e:
            logger.error(f"Nearest-neighbor search failed: {e}")
            raise StorageError("Failed to find similar students", cause=e) from e
        finally:
            await self._end_read()

        candidates = [
            CandidateMatch(student_id=row.mongo_id, text=row.text or "", distance=float(row.distance))
            for row in rows
        ]
        logger.info(f"Retrieved {len(candidates)} candidates (limit={limit}, metric={self.distance_metric})")
        return candidates

    async def upsert_matches(self, lead_id: str, matches: Sequence[RankedMatch]) -> None:
        """Replace the stored matches of a lead with ``matches``.

        Prior rows are deleted first inside a savepoint; if that cleanup fails
        it is logged and the insert still runs. Pairs repeated within
        ``matches`` are dropped by ON CONFLICT DO NOTHING.

        Raises:
            StorageError: If the insert or commit fails
        """
        if not matches:
            return

        logger.info(
            "Preparing to insert matched students",
            extra={"leadId": lead_id, "matchCount": len(matches)},
        )

        try:
            try:
                async with self.session.begin_nested():
                    await self.session.execute(
                        delete(models.LeadSimilarUser).where(models.LeadSimilarUser.lead_id == lead_id)
                    )
                logger.info("Deleted existing matches", extra={"leadId": lead_id})
            except Exception as e:
                logger.warning(
                    "Failed to delete existing matches",
                    extra={"leadId": lead_id, "error": str(e)},
                )

            stmt = (
                insert(models.LeadSimilarUser)
                .values(
                    [
                        {"lead_id": lead_id, "mongo_id": m.matched_id, "reason": m.reason}
                        for m in matches
                    ]
                )
                .on_conflict_do_nothing(index_elements=["lead_id", "mongo_id"])
            )
            await self.session.execute(stmt)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(
                "Failed to insert matched students",
                extra={"leadId": lead_id, "error": str(e)},
            )
            raise StorageError(f"Failed to insert matched students: {e}", cause=e) from e

        logger.info(f"Persisted {len(matches)} matches for lead {lead_id}")

    async def list_matches(self, lead_id: str) -> list[MatchRecord]:
        """Read back the stored matches of a lead."""
        try:
            query = (
                select(models.LeadSimilarUser)
                .where(models.LeadSimilarUser.lead_id == lead_id)
                .order_by(models.LeadSimilarUser.id)
            )
            result = await self.session.execute(query)
            rows = result.scalars().all()
        except Exception as e:
            logger.error(f"Match lookup failed: {e}")
            raise StorageError("Failed to retrieve stored matches", cause=e) from e

        return [MatchRecord(lead_id=r.lead_id, student_id=r.mongo_id, reason=r.reason) for r in rows]
