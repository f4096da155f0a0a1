"""Unit tests for PaginatedQueryPlanner."""

from types import SimpleNamespace

import pytest

from fakes import OTHER_OWNER_ID, OWNER_ID
from physio_records.api.services.patient_service import patient_listing
from physio_records.domain.ports import ErrorKind
from physio_records.domain.services.query_planner import PaginatedQueryPlanner

LISTING_SETTINGS = SimpleNamespace(aggregate_batch_size=200, search_max_length=100)


@pytest.fixture
def planner(store):
    return PaginatedQueryPlanner(store, patient_listing(LISTING_SETTINGS))


def seed_patients(database, count, owner_id=OWNER_ID):
    return [
        database.seed(
            "patients",
            therapist_id=owner_id,
            first_name="Anna",
            last_name=f"Patient{index:02d}",
        )
        for index in range(count)
    ]


async def collect_pages(planner, page_size, **kwargs):
    ids = []
    page = 1
    while True:
        result = await planner.list(OWNER_ID, page, page_size, **kwargs)
        assert result.is_success()
        if not result.value.items:
            return ids
        ids.extend(item.id for item in result.value.items)
        page += 1


class TestValidation:
    """Test argument validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,page_size,code", [
        (0, 20, "page_invalid"),
        (1, 0, "page_size_invalid"),
        (1, 101, "page_size_invalid"),
    ])
    async def test_invalid_window(self, planner, store, page, page_size, code):
        """Test that invalid windows fail before any remote call."""
        result = await planner.list(OWNER_ID, page, page_size)

        assert result.kind is ErrorKind.INVALID_ARGUMENT
        assert result.error == code
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_search_too_long(self, planner):
        """Test the search length limit."""
        result = await planner.list(OWNER_ID, 1, 20, search="x" * 101)
        assert result.error == "search_too_long"


class TestPagination:
    """Test windowing and totals."""

    @pytest.mark.asyncio
    async def test_page_boundaries(self, planner, database):
        """Test 45 items split into pages of 20."""
        seed_patients(database, 45)

        third = await planner.list(OWNER_ID, 3, 20)
        fourth = await planner.list(OWNER_ID, 4, 20)

        assert len(third.value.items) == 5
        assert third.value.total_items == 45
        assert third.value.total_pages == 3
        assert fourth.is_success()
        assert fourth.value.items == []
        assert fourth.value.total_pages == 3

    @pytest.mark.asyncio
    async def test_only_own_rows(self, planner, database):
        """Test that other owners' rows are not listed."""
        seed_patients(database, 3)
        seed_patients(database, 4, owner_id=OTHER_OWNER_ID)

        result = await planner.list(OWNER_ID, 1, 20)

        assert result.value.total_items == 3

    @pytest.mark.asyncio
    async def test_native_sort_aggregates_only_page(self, planner, database, store):
        """Test that child metrics are computed for the page ids only."""
        patients = seed_patients(database, 25)
        for patient in patients:
            database.seed("visits", patient_id=patient["id"], visit_date="2024-02-01T09:00:00.000Z")

        result = await planner.list(OWNER_ID, 2, 20, sort="lastName")

        page_ids = {item.id for item in result.value.items}
        assert len(page_ids) == 5
        visit_reads = [call for call in store.calls if call[0] == "select" and call[1] == "visits"]
        assert len(visit_reads) == 1
        assert set(visit_reads[0][2][0].value) == page_ids
        assert all(item.visit_count == 1 for item in result.value.items)


class TestSorting:
    """Test sort order and stability."""

    @pytest.mark.asyncio
    async def test_last_name_is_case_insensitive(self, planner, database):
        """Test that names sort without regard to case."""
        database.seed("patients", therapist_id=OWNER_ID, first_name="A", last_name="beta")
        database.seed("patients", therapist_id=OWNER_ID, first_name="A", last_name="Alpha")
        database.seed("patients", therapist_id=OWNER_ID, first_name="A", last_name="Gamma")

        result = await planner.list(OWNER_ID, 1, 20)

        assert [item.last_name for item in result.value.items] == ["Alpha", "beta", "Gamma"]

    @pytest.mark.asyncio
    async def test_latest_visit_sort_spans_all_pages(self, planner, database):
        """Test that the aggregate sort orders the full set before slicing."""
        patients = seed_patients(database, 5)
        dates = ["2024-03-01", "2024-01-01", None, "2024-05-01", "2024-02-01"]
        for patient, day in zip(patients, dates):
            if day is not None:
                database.seed("visits", patient_id=patient["id"], visit_date=f"{day}T09:00:00.000Z")

        first = await planner.list(OWNER_ID, 1, 2, sort="latestVisitDate")
        last = await planner.list(OWNER_ID, 3, 2, sort="latestVisitDate")

        assert [item.id for item in first.value.items] == [patients[3]["id"], patients[0]["id"]]
        assert [item.id for item in last.value.items] == [patients[2]["id"]]
        assert last.value.items[0].visit_count == 0
        assert last.value.items[0].latest_visit_date is None

        ascending = await planner.list(OWNER_ID, 1, 5, sort="latestVisitDate", order="asc")
        assert ascending.value.items[0].id == patients[2]["id"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sort", ["lastName", "createdAt", "latestVisitDate"])
    async def test_windows_cover_set_exactly_once(self, planner, database, sort):
        """Test that paging with ties yields each row exactly once."""
        patients = [
            database.seed("patients", therapist_id=OWNER_ID, first_name="Anna", last_name="Same")
            for _ in range(7)
        ]
        for patient in patients[:3]:
            database.seed("visits", patient_id=patient["id"], visit_date="2024-02-01T09:00:00.000Z")

        first_pass = await collect_pages(planner, 3, sort=sort)
        second_pass = await collect_pages(planner, 3, sort=sort)

        assert sorted(first_pass) == sorted(patient["id"] for patient in patients)
        assert len(set(first_pass)) == len(first_pass)
        assert first_pass == second_pass

    @pytest.mark.asyncio
    async def test_unknown_sort_and_order_fall_back(self, planner, database):
        """Test that unknown tokens use the default sort and direction."""
        database.seed("patients", therapist_id=OWNER_ID, first_name="A", last_name="Beta")
        database.seed("patients", therapist_id=OWNER_ID, first_name="A", last_name="Alpha")

        result = await planner.list(OWNER_ID, 1, 20, sort="shoeSize", order="sideways")

        assert [item.last_name for item in result.value.items] == ["Alpha", "Beta"]


class TestSearch:
    """Test free-text search."""

    @pytest.mark.asyncio
    async def test_matches_first_or_last_name(self, planner, database):
        """Test case-insensitive partial matching on both names."""
        database.seed("patients", therapist_id=OWNER_ID, first_name="Anna", last_name="Nowak")
        database.seed("patients", therapist_id=OWNER_ID, first_name="Jan", last_name="Kowal")
        database.seed("patients", therapist_id=OWNER_ID, first_name="Joanna", last_name="Lis")

        result = await planner.list(OWNER_ID, 1, 20, search="  ANN ")

        assert sorted(item.first_name for item in result.value.items) == ["Anna", "Joanna"]
        assert result.value.total_items == 2

    @pytest.mark.asyncio
    async def test_wildcards_match_literally(self, planner, database):
        """Test that LIKE wildcards in the term are escaped."""
        database.seed("patients", therapist_id=OWNER_ID, first_name="A_b", last_name="X")
        database.seed("patients", therapist_id=OWNER_ID, first_name="Axb", last_name="Y")

        result = await planner.list(OWNER_ID, 1, 20, search="a_b")

        assert [item.first_name for item in result.value.items] == ["A_b"]
