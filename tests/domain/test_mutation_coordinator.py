"""Unit tests for MutationCoordinator against the in-memory store."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from fakes import FIXED_NOW, OTHER_OWNER_ID, OWNER_ID
from physio_records.api.services.patient_service import patient_definition
from physio_records.api.services.visit_service import visit_definition
from physio_records.domain.ports import ErrorKind, Result
from physio_records.domain.services.concurrency_token import ConcurrencyToken
from physio_records.domain.services.mutation_coordinator import MutationCoordinator

ANNA = {"first_name": "Anna", "last_name": "Nowak", "date_of_birth": date(1990, 5, 12)}


@pytest.fixture
def patients(store, fixed_clock):
    return MutationCoordinator(store, patient_definition(fixed_clock))


@pytest.fixture
def other_patients(other_store, fixed_clock):
    return MutationCoordinator(other_store, patient_definition(fixed_clock))


@pytest.fixture
def visits(store, fixed_clock):
    return MutationCoordinator(store, visit_definition(fixed_clock, 30))


class TestScenario:
    """Test the create, duplicate and stale-update sequence."""

    @pytest.mark.asyncio
    async def test_create_duplicate_and_stale_update(self, patients):
        """Test the full create/duplicate/conflict walkthrough."""
        created = await patients.create(OWNER_ID, ANNA)
        assert created.is_success()
        assert created.value.etag == 'W/"2024-01-01T10:00:00.000Z"'
        assert created.value.therapist_id == OWNER_ID
        t0 = created.value.etag

        duplicate = await patients.create(OWNER_ID, {**ANNA, "first_name": "ANNA"})
        assert duplicate.kind is ErrorKind.DUPLICATE_CONFLICT
        assert duplicate.error == "patient_duplicate"

        first = await patients.update(OWNER_ID, created.value.id, {**ANNA, "first_name": "Anne"}, t0)
        assert first.is_success()
        assert first.value.etag != t0

        second = await patients.update(OWNER_ID, created.value.id, {**ANNA, "first_name": "Hanna"}, t0)
        assert second.kind is ErrorKind.VERSION_CONFLICT
        assert second.error == "etag_mismatch"
        assert second.error_details["current_etag"] == first.value.etag

        reread = await patients.read(OWNER_ID, created.value.id)
        assert reread.value.first_name == "Anne"


class TestUpdatePreconditions:
    """Test If-Match handling on update."""

    @pytest.mark.asyncio
    async def test_missing_tag(self, patients, store):
        """Test that a missing tag is rejected before any remote call."""
        created = await patients.create(OWNER_ID, ANNA)
        calls_before = len(store.calls)

        result = await patients.update(OWNER_ID, created.value.id, ANNA, None)

        assert result.kind is ErrorKind.MISSING_PRECONDITION
        assert result.error == "missing_if_match"
        assert len(store.calls) == calls_before

    @pytest.mark.asyncio
    async def test_malformed_tag(self, patients, store):
        """Test that a malformed tag is rejected before any remote call."""
        created = await patients.create(OWNER_ID, ANNA)
        calls_before = len(store.calls)

        result = await patients.update(OWNER_ID, created.value.id, ANNA, '"2024-01-01T10:00:00.000Z"')

        assert result.kind is ErrorKind.INVALID_PRECONDITION
        assert len(store.calls) == calls_before

    @pytest.mark.asyncio
    async def test_validation_before_fetch(self, patients, store):
        """Test that invalid input fails without touching the store."""
        created = await patients.create(OWNER_ID, ANNA)
        calls_before = len(store.calls)

        result = await patients.update(
            OWNER_ID, created.value.id, {**ANNA, "first_name": "  "}, created.value.etag
        )

        assert result.error == "first_name_required"
        assert len(store.calls) == calls_before

    @pytest.mark.asyncio
    async def test_no_op_rejected(self, patients, database):
        """Test that unchanged values are rejected and updated_at is kept."""
        created = await patients.create(OWNER_ID, ANNA)

        result = await patients.update(
            OWNER_ID, created.value.id, {**ANNA, "first_name": " Anna "}, created.value.etag
        )

        assert result.kind is ErrorKind.NO_OP_REJECTED
        assert result.error == "no_changes_submitted"
        assert database.find("patients", created.value.id)["updated_at"] == created.value.updated_at.isoformat()

    @pytest.mark.asyncio
    async def test_equivalent_zone_tag_is_accepted(self, patients):
        """Test that a tag in another zone for the same instant matches."""
        created = await patients.create(OWNER_ID, ANNA)

        result = await patients.update(
            OWNER_ID,
            created.value.id,
            {**ANNA, "last_name": "Kowalska"},
            'W/"2024-01-01T11:00:00+01:00"',
        )

        assert result.is_success()
        assert result.value.last_name == "Kowalska"


class TestOwnership:
    """Test cross-owner isolation."""

    @pytest.mark.asyncio
    async def test_other_owner_sees_not_found(self, patients, other_patients):
        """Test that another principal cannot read, update or delete."""
        created = await patients.create(OWNER_ID, ANNA)
        record_id = created.value.id

        read = await other_patients.read(OTHER_OWNER_ID, record_id)
        updated = await other_patients.update(
            OTHER_OWNER_ID, record_id, {**ANNA, "first_name": "Eve"}, created.value.etag
        )
        deleted = await other_patients.delete(OTHER_OWNER_ID, record_id)

        for result in (read, updated, deleted):
            assert result.kind is ErrorKind.NOT_FOUND
            assert result.error == "patient_missing"
        assert (await patients.read(OWNER_ID, record_id)).value.first_name == "Anna"

    @pytest.mark.asyncio
    async def test_same_patient_allowed_for_different_owners(self, patients, other_patients):
        """Test that uniqueness is scoped to the owner."""
        assert (await patients.create(OWNER_ID, ANNA)).is_success()
        assert (await other_patients.create(OTHER_OWNER_ID, ANNA)).is_success()

    @pytest.mark.asyncio
    async def test_invalid_identifier(self, patients, store):
        """Test that a non-UUID id is reported as missing without a store call."""
        result = await patients.read(OWNER_ID, "not-a-uuid")
        assert result.kind is ErrorKind.NOT_FOUND
        assert result.error == "patient_missing"
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_unknown_identifier(self, patients):
        """Test that an unknown UUID gives NOT_FOUND."""
        result = await patients.read(OWNER_ID, "33333333-3333-4333-8333-333333333333")
        assert result.kind is ErrorKind.NOT_FOUND


class TestStoreFailures:
    """Test translation of store-reported failures."""

    @pytest.mark.asyncio
    async def test_unique_index_violation_is_duplicate(self, patients):
        """Test that a race past the pre-check still yields DUPLICATE_CONFLICT."""
        assert (await patients.create(OWNER_ID, ANNA)).is_success()
        patients._find_duplicate = AsyncMock(return_value=Result.success_result(False))

        result = await patients.create(OWNER_ID, ANNA)

        assert result.kind is ErrorKind.DUPLICATE_CONFLICT
        assert result.error == "patient_duplicate"

    @pytest.mark.asyncio
    async def test_upstream_failure_hides_message(self, patients, store):
        """Test that store messages are not carried to the caller."""
        created = await patients.create(OWNER_ID, ANNA)
        store.fail("select", "patients", code="08006", message="connection reset by peer")

        result = await patients.read(OWNER_ID, created.value.id)

        assert result.kind is ErrorKind.UPSTREAM_UNAVAILABLE
        assert result.error_details["code"] == "08006"
        assert "message" not in result.error_details

    @pytest.mark.asyncio
    async def test_insert_without_representation(self, patients, store):
        """Test that an empty insert response is an upstream failure."""
        store.insert = AsyncMock(return_value=Result.success_result([]))

        result = await patients.create(OWNER_ID, ANNA)

        assert result.kind is ErrorKind.UPSTREAM_UNAVAILABLE
        assert result.error == "patient_create_failed"


class TestDelete:
    """Test delete behaviour."""

    @pytest.mark.asyncio
    async def test_delete_returns_previous_record(self, patients):
        """Test that delete returns the record as it was."""
        created = await patients.create(OWNER_ID, ANNA)

        deleted = await patients.delete(OWNER_ID, created.value.id)

        assert deleted.value.id == created.value.id
        assert (await patients.read(OWNER_ID, created.value.id)).kind is ErrorKind.NOT_FOUND


class TestParentOwnership:
    """Test visits owned through their patient."""

    @pytest.mark.asyncio
    async def test_create_under_foreign_patient(self, visits, database):
        """Test that a visit cannot be attached to another owner's patient."""
        foreign = database.seed("patients", therapist_id=OTHER_OWNER_ID, first_name="Eve", last_name="Doe")

        result = await visits.create(OWNER_ID, {"patient_id": foreign["id"], "interview": "pain"})

        assert result.kind is ErrorKind.NOT_FOUND
        assert result.error == "patient_missing"

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, patients, visits):
        """Test that omitted fields keep their value."""
        patient = await patients.create(OWNER_ID, ANNA)
        visit = await visits.create(OWNER_ID, {"patient_id": patient.value.id, "interview": "knee pain"})
        assert visit.value.visit_date == FIXED_NOW

        updated = await visits.update(
            OWNER_ID, visit.value.id, {"description": "mobility exercises"}, visit.value.etag
        )

        assert updated.value.interview == "knee pain"
        assert updated.value.description == "mobility exercises"

    @pytest.mark.asyncio
    async def test_cannot_clear_all_content(self, patients, visits):
        """Test that at least one content field must remain."""
        patient = await patients.create(OWNER_ID, ANNA)
        visit = await visits.create(OWNER_ID, {"patient_id": patient.value.id, "interview": "knee pain"})

        result = await visits.update(OWNER_ID, visit.value.id, {"interview": "  "}, visit.value.etag)

        assert result.error == "visit_content_required"

    @pytest.mark.asyncio
    async def test_visit_tag_comes_from_store_clock(self, patients, visits):
        """Test that the tag reflects the store's updated_at."""
        patient = await patients.create(OWNER_ID, ANNA)
        visit = await visits.create(OWNER_ID, {"patient_id": patient.value.id, "interview": "knee pain"})

        assert visit.value.etag == ConcurrencyToken.format(visit.value.updated_at)
        assert visit.value.etag == 'W/"2024-01-01T10:00:01.000Z"'
