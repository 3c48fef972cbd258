"""
Irshad Backend: Family Service Tests
=====================================

What:  Tests for Dugsi family edits, billing status and family deletion.
How:   Profiles and guardian rows are MagicMocks with real ids;
       registration_service is patched on the family module for the
       workflows that create people or links.

What we test:
    ✅ Non-Dugsi profiles are not found
    ✅ Parent edits: number range, missing parent 2, phone updated in place
    ✅ A third parent is refused; a second parent is linked to every child
    ✅ A new child inherits the guardians and payer flag, and gets siblings
    ✅ Billing status with and without an active assignment
    ✅ Search and PATCH reject empty input
    ✅ Family delete removes every profile of the household
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.enums import EnrollmentStatus, Program, SubscriptionStatus
from app.schemas.family import ChildUpdateInput, ParentUpdateInput, SecondParentInput
from app.schemas.registration import ChildInput
from app.services.family_service import FamilyService


def _profile(name="Amina Ali", family_reference_id="fam-1", program=Program.DUGSI_PROGRAM):
    profile = MagicMock()
    profile.id = uuid.uuid4()
    profile.person_id = uuid.uuid4()
    profile.person.name = name
    profile.program = program
    profile.family_reference_id = family_reference_id
    return profile


def _guardian(is_primary_payer=False):
    relation = MagicMock()
    relation.guardian_id = uuid.uuid4()
    relation.guardian.id = relation.guardian_id
    relation.is_primary_payer = is_primary_payer
    return relation


class TestLookups:

    def setup_method(self):
        self.service = FamilyService()

    @pytest.mark.asyncio
    async def test_mahad_profile_is_not_a_dugsi_student(self, mock_db_session):
        mock_db_session.get.return_value = _profile(program=Program.MAHAD_PROGRAM)
        with pytest.raises(NotFoundError):
            await self.service.get_dugsi_profile(mock_db_session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_family_without_reference_is_just_the_child(self, mock_db_session):
        profile = _profile(family_reference_id=None)
        assert await self.service.get_family_profiles(mock_db_session, profile) == [profile]
        mock_db_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_primary_payer(self, mock_db_session, make_result):
        payer = _guardian(is_primary_payer=True)
        mock_db_session.execute.return_value = make_result(scalars=[_guardian(), payer])

        assert await self.service.get_primary_payer(mock_db_session, _profile()) is payer


class TestParentEdits:

    def setup_method(self):
        self.service = FamilyService()
        self.update = ParentUpdateInput(first_name="Hodan", last_name="Warsame", phone="612-555-0123")

    @pytest.mark.asyncio
    async def test_parent_number_out_of_range(self, mock_db_session):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.update_parent_info(mock_db_session, uuid.uuid4(), 3, self.update)
        assert exc_info.value.field == "parent_number"

    @pytest.mark.asyncio
    async def test_missing_parent_two(self, mock_db_session, make_result):
        mock_db_session.get.return_value = _profile()
        mock_db_session.execute.return_value = make_result(scalars=[_guardian()])

        with pytest.raises(NotFoundError):
            await self.service.update_parent_info(mock_db_session, uuid.uuid4(), 2, self.update)

    @pytest.mark.asyncio
    async def test_phone_updated_in_place(self, mock_db_session, make_result):
        relation = _guardian()
        phone = MagicMock(value="6125550100")
        relation.guardian.primary_contact.return_value = phone
        mock_db_session.get.return_value = _profile()
        mock_db_session.execute.return_value = make_result(scalars=[relation])

        parent = await self.service.update_parent_info(mock_db_session, uuid.uuid4(), 1, self.update)

        assert parent is relation.guardian
        assert parent.name == "Hodan Warsame"
        assert phone.value == "6125550123"
        parent.contact_points.append.assert_not_called()

    @pytest.mark.asyncio
    async def test_third_parent_refused(self, mock_db_session, make_result):
        mock_db_session.get.return_value = _profile()
        mock_db_session.execute.return_value = make_result(scalars=[_guardian(), _guardian()])
        data = SecondParentInput(
            first_name="Abdi", last_name="Ali", phone="612-555-0101", email="abdi@example.com"
        )

        with pytest.raises(ConflictError) as exc_info:
            await self.service.add_second_parent(mock_db_session, uuid.uuid4(), data)
        assert exc_info.value.code == "PARENT_LIMIT_REACHED"

    @pytest.mark.asyncio
    async def test_second_parent_linked_to_every_child(self, mock_db_session, make_result):
        first, second = _profile(), _profile("Yusuf Ali")
        parent = MagicMock(id=uuid.uuid4())
        mock_db_session.get.return_value = first
        mock_db_session.execute.side_effect = [
            make_result(scalars=[_guardian(is_primary_payer=True)]),
            make_result(scalars=[first, second]),
        ]
        data = SecondParentInput(
            first_name="Abdi", last_name="Ali", phone="612-555-0101", email="Abdi@Example.com"
        )

        with patch("app.services.family_service.registration_service") as mock_registration:
            mock_registration.find_or_create_person_with_contact = AsyncMock(
                return_value=(parent, True)
            )
            mock_registration.link_guardian_to_dependent = AsyncMock()

            result = await self.service.add_second_parent(mock_db_session, first.id, data)

        assert result is parent
        assert mock_registration.find_or_create_person_with_contact.call_args.kwargs["email"] == (
            "abdi@example.com"
        )
        linked = [c.kwargs["dependent_id"] for c in mock_registration.link_guardian_to_dependent.call_args_list]
        assert linked == [first.person_id, second.person_id]


class TestAddChild:

    def setup_method(self):
        self.service = FamilyService()
        self.child = ChildInput(first_name="Zahra", last_name="Ali", date_of_birth="2019-01-20")

    @pytest.mark.asyncio
    async def test_requires_family_reference(self, mock_db_session):
        mock_db_session.get.return_value = _profile(family_reference_id=None)
        with pytest.raises(ValidationError) as exc_info:
            await self.service.add_child_to_family(mock_db_session, uuid.uuid4(), self.child)
        assert exc_info.value.code == "NO_FAMILY_REFERENCE"

    @pytest.mark.asyncio
    async def test_child_inherits_guardians(self, mock_db_session, make_result):
        sibling = _profile()
        payer, other = _guardian(is_primary_payer=True), _guardian()
        person = MagicMock(id=uuid.uuid4())
        person.name = "Zahra Ali"
        new_profile = MagicMock(id=uuid.uuid4())
        mock_db_session.get.return_value = sibling
        mock_db_session.execute.side_effect = [
            make_result(scalars=[payer, other]),
            make_result(scalars=[sibling]),
        ]

        with patch("app.services.family_service.registration_service") as mock_registration:
            mock_registration.create_person_with_contact = AsyncMock(return_value=person)
            mock_registration.link_guardian_to_dependent = AsyncMock()
            mock_registration.create_program_profile_with_enrollment = AsyncMock(
                return_value=(new_profile, MagicMock())
            )
            mock_registration.ensure_sibling_relationships = AsyncMock()

            result = await self.service.add_child_to_family(mock_db_session, sibling.id, self.child)

        links = {
            c.kwargs["guardian_id"]: c.kwargs["is_primary_payer"]
            for c in mock_registration.link_guardian_to_dependent.call_args_list
        }
        assert links == {payer.guardian_id: True, other.guardian_id: False}
        profile_kwargs = mock_registration.create_program_profile_with_enrollment.call_args.kwargs
        assert profile_kwargs["family_reference_id"] == "fam-1"
        assert profile_kwargs["status"] == EnrollmentStatus.REGISTERED
        mock_registration.ensure_sibling_relationships.assert_awaited_once_with(
            mock_db_session, [sibling.person_id, person.id]
        )
        assert result.id == new_profile.id
        assert result.name == "Zahra Ali"


class TestStatusAndSearch:

    def setup_method(self):
        self.service = FamilyService()

    @pytest.mark.asyncio
    async def test_no_active_assignment(self, mock_db_session, make_result):
        mock_db_session.get.return_value = _profile()
        mock_db_session.execute.return_value = make_result(rows=[])

        status = await self.service.get_student_billing_status(mock_db_session, uuid.uuid4())

        assert status.has_subscription is False
        assert status.amount == 0

    @pytest.mark.asyncio
    async def test_active_assignment_share(self, mock_db_session, make_result):
        assignment = MagicMock(amount=8000)
        subscription = MagicMock(status=SubscriptionStatus.ACTIVE, paid_until=None)
        mock_db_session.get.return_value = _profile()
        mock_db_session.execute.return_value = make_result(rows=[(assignment, subscription)])

        status = await self.service.get_student_billing_status(mock_db_session, uuid.uuid4())

        assert status.has_subscription is True
        assert status.amount == 8000
        assert status.subscription_status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_search_needs_contact(self, mock_db_session):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.search_registrations_by_contact(mock_db_session, email=" ", phone="12")
        assert exc_info.value.code == "MISSING_CONTACT"

    @pytest.mark.asyncio
    async def test_patch_needs_a_field(self, mock_db_session):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.update_dugsi_student(mock_db_session, uuid.uuid4(), ChildUpdateInput())
        assert exc_info.value.code == "NO_FIELDS"


class TestDeleteFamily:

    def setup_method(self):
        self.service = FamilyService()

    @pytest.mark.asyncio
    async def test_preview_lists_names(self, mock_db_session, make_result):
        first, second = _profile("Amina Ali"), _profile("Yusuf Ali")
        mock_db_session.get.return_value = first
        mock_db_session.execute.return_value = make_result(scalars=[first, second])

        preview = await self.service.get_delete_family_preview(mock_db_session, first.id)

        assert preview.count == 2
        assert preview.students == ["Amina Ali", "Yusuf Ali"]

    @pytest.mark.asyncio
    async def test_deletes_every_profile(self, mock_db_session, make_result):
        first, second = _profile(), _profile("Yusuf Ali")
        mock_db_session.get.return_value = first
        mock_db_session.execute.return_value = make_result(scalars=[first, second])

        deleted = await self.service.delete_family(mock_db_session, first.id)

        assert deleted == 2
        assert [c[0][0] for c in mock_db_session.delete.call_args_list] == [first, second]
