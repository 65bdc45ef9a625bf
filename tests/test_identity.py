# mypy: ignore-errors
"""Tests for sender name resolution."""

import pytest

from clientdesk.backend.errors import DatabaseError
from clientdesk.services.errors import ResolutionError
from clientdesk.services.identity import UNKNOWN_USER


@pytest.mark.asyncio
async def test_resolve_uses_a_single_batched_query(resolver, seeded, mocker):
    select = mocker.spy(resolver.database, "select")

    resolution = await resolver.resolve(
        [seeded.admin_id, seeded.client_user_id, seeded.admin_id, seeded.client_user_id]
    )

    assert select.call_count == 1
    assert not resolution.recovered
    assert resolution.names == {
        seeded.admin_id: seeded.admin_name,
        seeded.client_user_id: seeded.client_user_name,
    }


@pytest.mark.asyncio
async def test_resolve_names_falls_back_for_unknown_ids(resolver, seeded):
    names = await resolver.resolve_names([seeded.admin_id, "nobody"])

    assert names == {seeded.admin_id: seeded.admin_name, "nobody": UNKNOWN_USER}


@pytest.mark.asyncio
async def test_resolve_nothing_skips_the_query(resolver, mocker):
    select = mocker.spy(resolver.database, "select")

    resolution = await resolver.resolve([])

    assert resolution.names == {}
    select.assert_not_called()


@pytest.mark.asyncio
async def test_blank_full_name_is_unknown(resolver, engine, seeded):
    from clientdesk.db.session import build_session_factory
    from clientdesk.models import Profile

    with build_session_factory(engine)() as session:
        session.add(Profile(id="blank", full_name="   ", role="client"))
        session.commit()

    assert await resolver.resolve_name("blank") == UNKNOWN_USER


@pytest.mark.asyncio
async def test_resolve_recovers_from_lookup_failure(resolver, mocker):
    mocker.patch.object(resolver.database, "select", side_effect=DatabaseError("timeout"))

    resolution = await resolver.resolve(["a", "b"])

    assert resolution.recovered
    assert isinstance(resolution.error, ResolutionError)
    assert resolution.names == {"a": UNKNOWN_USER, "b": UNKNOWN_USER}
    assert resolution.name_for("a") == UNKNOWN_USER


@pytest.mark.asyncio
async def test_resolve_name_single_lookup(resolver, seeded, mocker):
    assert await resolver.resolve_name(seeded.client_user_id) == seeded.client_user_name
    assert await resolver.resolve_name("missing") == UNKNOWN_USER
    assert await resolver.resolve_name("") == UNKNOWN_USER

    mocker.patch.object(resolver.database, "select", side_effect=DatabaseError("timeout"))
    assert await resolver.resolve_name(seeded.client_user_id) == UNKNOWN_USER
