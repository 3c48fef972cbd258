"""
Irshad Backend: Batch Service Tests
====================================

What:  Tests for Mahad cohort CRUD, assignment and transfer.
How:   Mock DB session; student counts come back as (batch_id, count) rows.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.enums import EnrollmentStatus, Program
from app.models.program import Batch
from app.schemas.batch import BatchCreateInput
from app.services.batch_service import BatchService


def _batch(name="Cohort 2026") -> Batch:
    return Batch(id=uuid.uuid4(), name=name)


class TestBatchCrud:

    def setup_method(self):
        self.service = BatchService()

    @pytest.mark.asyncio
    async def test_delete_batch_with_students_rejected(self, mock_db_session, make_result):
        batch = _batch()
        mock_db_session.get = AsyncMock(return_value=batch)
        mock_db_session.execute.return_value = make_result(rows=[(batch.id, 3)])

        with pytest.raises(ValidationError) as exc_info:
            await self.service.delete_batch(mock_db_session, batch.id)

        assert exc_info.value.code == "BATCH_HAS_STUDENTS"
        mock_db_session.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_empty_batch(self, mock_db_session, make_result):
        batch = _batch()
        mock_db_session.get = AsyncMock(return_value=batch)
        mock_db_session.execute.return_value = make_result(rows=[])

        await self.service.delete_batch(mock_db_session, batch.id)

        mock_db_session.delete.assert_awaited_once_with(batch)

    @pytest.mark.asyncio
    async def test_missing_batch(self, mock_db_session):
        with pytest.raises(NotFoundError):
            await self.service.delete_batch(mock_db_session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalars=[uuid.uuid4()])

        with pytest.raises(ConflictError) as exc_info:
            await self.service.create_batch(mock_db_session, BatchCreateInput(name="Cohort 2026"))
        assert exc_info.value.code == "DUPLICATE_BATCH"

    @pytest.mark.asyncio
    async def test_summary(self, mock_db_session, make_result):
        first, second = uuid.uuid4(), uuid.uuid4()
        mock_db_session.execute.side_effect = [
            make_result(scalar=4),
            make_result(rows=[(first, 10), (second, 5)]),
        ]

        summary = await self.service.get_batch_summary(mock_db_session)

        assert summary.total_batches == 4
        assert summary.total_students == 15
        assert summary.active_batches == 2
        assert summary.average_students_per_batch == 3.8


class TestBatchAssignment:

    def setup_method(self):
        self.service = BatchService()

    @pytest.mark.asyncio
    async def test_non_mahad_profiles_fail_individually(self, mock_db_session):
        batch = _batch()
        mahad = MagicMock(program=Program.MAHAD_PROGRAM, status=EnrollmentStatus.REGISTERED)
        dugsi = MagicMock(program=Program.DUGSI_PROGRAM)
        mahad_id, dugsi_id = uuid.uuid4(), uuid.uuid4()
        lookup = {batch.id: batch, mahad_id: mahad, dugsi_id: dugsi}
        mock_db_session.get = AsyncMock(side_effect=lambda model, key: lookup.get(key))

        with patch("app.services.batch_service.registration_service") as mock_registration:
            mock_registration.get_active_enrollment = AsyncMock(return_value=None)

            result = await self.service.assign_students_to_batch(
                mock_db_session, batch.id, [mahad_id, dugsi_id]
            )

        assert result.success is False
        assert result.assigned_count == 1
        assert result.failed_assignments == [dugsi_id]
        assert mahad.status == EnrollmentStatus.ENROLLED
        mock_db_session.add.assert_called_once()

    @pytest.mark.asyncio
    async def test_transfer_reports_students_not_in_source(self, mock_db_session, make_result):
        source, target = _batch("A"), _batch("B")
        enrolled, stray = uuid.uuid4(), uuid.uuid4()
        enrollment = MagicMock(program_profile_id=enrolled, batch_id=source.id)
        mock_db_session.get = AsyncMock(side_effect=lambda model, key: {source.id: source, target.id: target}.get(key))
        mock_db_session.execute.return_value = make_result(scalars=[enrollment])

        result = await self.service.transfer_students(
            mock_db_session, source.id, target.id, [enrolled, stray]
        )

        assert enrollment.batch_id == target.id
        assert result.assigned_count == 1
        assert result.failed_assignments == [stray]
