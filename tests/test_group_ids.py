import pytest
from sqlalchemy import update

from conftest import enroll_group
from loanflow.models.archived_loan_group import ArchivedLoanGroup
from loanflow.models.group_id_sequence import GroupIdSequence
from loanflow.models.loan_group import LoanGroup
from loanflow.services.group_ids import allocate_group_id, format_group_id, parse_group_number


def test_format_group_id_pads_to_width():
    assert format_group_id("LC", 1, 4) == "LC0001"
    assert format_group_id("LC", 42, 4) == "LC0042"


def test_format_group_id_grows_past_width():
    assert format_group_id("LC", 12345, 4) == "LC12345"


@pytest.mark.parametrize(
    "group_id,expected",
    [
        ("LC0007", 7),
        ("LC12345", 12345),
        ("XX0007", None),
        ("LC00A7", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_group_number(group_id, expected):
    assert parse_group_number(group_id, "LC") == expected


@pytest.mark.asyncio
async def test_first_allocation_is_lc0001(db, ctx):
    first = await allocate_group_id(db, ctx)
    await db.commit()
    second = await allocate_group_id(db, ctx)
    await db.commit()

    assert first == "LC0001"
    assert second == "LC0002"


@pytest.mark.asyncio
async def test_allocation_seeds_from_existing_live_and_archived_ids(db, ctx):
    db.add(LoanGroup(id="LC0004", created_at=ctx.now()))
    db.add(ArchivedLoanGroup(group_id="LC0009", status="Expired", payload="{}"))
    await db.commit()

    assert await allocate_group_id(db, ctx) == "LC0010"


@pytest.mark.asyncio
async def test_allocation_rereads_counter_moved_by_another_writer(db, ctx):
    await allocate_group_id(db, ctx)
    await db.commit()

    # Another process advances the counter behind this session's back.
    await db.execute(
        update(GroupIdSequence.__table__)
        .where(GroupIdSequence.__table__.c.prefix == "LC")
        .values(last_value=5, version=GroupIdSequence.__table__.c.version + 1)
    )
    await db.commit()

    assert await allocate_group_id(db, ctx) == "LC0006"


@pytest.mark.asyncio
async def test_enrollments_receive_sequential_ids(db, ctx):
    first = await enroll_group(db, ctx)
    second = await enroll_group(db, ctx, applicant_id="C101", guarantor1_id="C201", guarantor2_id="C301")

    assert (first.id, second.id) == ("LC0001", "LC0002")
