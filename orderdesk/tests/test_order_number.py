from datetime import date

import pytest

from factories import make_order
from orderdesk.app.errors import AllocationFailure
from orderdesk.app.utils.order_number import format_order_number, next_order_number

DAY = date(2025, 9, 2)


async def _allocate(sessions, day=DAY, max_attempts=50):
    async with sessions() as session:
        async with session.begin():
            return await next_order_number(session, day, max_attempts)


def test_format():
    assert format_order_number(DAY, 1) == "ORD-20250902-0001"
    assert format_order_number(DAY, 12345) == "ORD-20250902-12345"


@pytest.mark.anyio
async def test_first_of_day_then_sequential(sessions):
    assert await _allocate(sessions) == "ORD-20250902-0001"
    assert await _allocate(sessions) == "ORD-20250902-0002"
    assert await _allocate(sessions, date(2025, 9, 3)) == "ORD-20250903-0001"


@pytest.mark.anyio
async def test_seeded_from_existing_orders(sessions):
    await make_order(sessions, "ORD-20250902-0001")
    await make_order(sessions, "ORD-20250902-0002")
    await make_order(sessions, "ORD-20250901-0007")
    assert await _allocate(sessions) == "ORD-20250902-0003"


@pytest.mark.anyio
async def test_skips_taken_numbers(sessions):
    await make_order(sessions, "ORD-20250902-0002")
    # one order today seeds 0002, which is taken
    assert await _allocate(sessions) == "ORD-20250902-0003"


@pytest.mark.anyio
async def test_exhausted_attempts(sessions):
    await make_order(sessions, "ORD-20250902-0002")
    with pytest.raises(AllocationFailure) as info:
        await _allocate(sessions, max_attempts=1)
    assert info.value.details == {"day": "20250902", "attempts": 1}
