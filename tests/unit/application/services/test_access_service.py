"""Tests for ownership and access resolution."""

from datetime import timedelta

import pytest

from soundledger.application.services import AccessService
from soundledger.domain.entities import AccessOutcome, Provenance, SubscriptionStatus
from soundledger.domain.exceptions import InvalidReferenceException


@pytest.fixture
def service(session_factory, clock) -> AccessService:
    return AccessService(session_factory, clock=clock)


class TestResolveAccess:
    async def test_purchase_grants_access_without_subscription(
        self, service: AccessService, seed
    ) -> None:
        await seed.song(1)
        await seed.ownership(7, 1, Provenance.PURCHASED, "order-1")

        assert await service.resolve_access(7, 1) is AccessOutcome.OWNED
        assert await service.can_access(7, 1) is True

    async def test_entitled_user_gets_grant_materialized_once(
        self, service: AccessService, seed
    ) -> None:
        await seed.song(1)
        await seed.subscription(7)

        assert await service.resolve_access(7, 1) is AccessOutcome.GRANTED
        assert await service.resolve_access(7, 1) is AccessOutcome.OWNED

        records = await seed.ownerships(7)
        assert list(records) == [1]
        assert records[1].provenance is Provenance.SUBSCRIPTION

    async def test_unentitled_user_is_refused_and_nothing_is_written(
        self, service: AccessService, seed
    ) -> None:
        await seed.song(1)

        assert await service.resolve_access(7, 1) is AccessOutcome.NOT_ENTITLED
        assert await service.can_access(7, 1) is False
        assert await seed.ownerships(7) == {}

    async def test_lapsed_cancellation_does_not_entitle(
        self, service: AccessService, seed, now
    ) -> None:
        await seed.song(1)
        await seed.subscription(
            7, SubscriptionStatus.CANCELLED, end_date=now - timedelta(minutes=1)
        )

        assert await service.can_access(7, 1) is False

    async def test_cancelled_inside_paid_period_still_entitles(
        self, service: AccessService, seed, now
    ) -> None:
        await seed.song(1)
        await seed.subscription(7, SubscriptionStatus.CANCELLED, end_date=now + timedelta(days=3))

        assert await service.can_access(7, 1) is True

    async def test_missing_song_is_a_plain_no(self, service: AccessService, seed) -> None:
        await seed.subscription(7)

        assert await service.resolve_access(7, 404) is AccessOutcome.NOT_FOUND
        assert await service.can_access(7, 404) is False

    @pytest.mark.parametrize(
        "song_kwargs",
        [
            {"is_album_cover": True},
            {"is_active": False},
            {"audio_ref": None},
            {"audio_ref": "   "},
        ],
    )
    async def test_unplayable_songs_are_never_granted(
        self, service: AccessService, seed, song_kwargs
    ) -> None:
        await seed.song(1, **song_kwargs)
        await seed.subscription(7)

        assert await service.resolve_access(7, 1) is AccessOutcome.NOT_PLAYABLE
        assert await seed.ownerships(7) == {}


class TestListAccessibleCatalog:
    async def test_entitled_user_gets_whole_playable_catalog(
        self, service: AccessService, seed
    ) -> None:
        """An entitled user with nothing owned sees every playable song."""
        await seed.songs(1, 2, 3)
        await seed.song(4, is_album_cover=True)
        await seed.subscription(7)
        playlist = await seed.playlist(7)

        accessible = await service.list_accessible_catalog(7, playlist.id)

        assert [item.song.id for item in accessible] == [1, 2, 3]
        records = await seed.ownerships(7)
        assert set(records) == {1, 2, 3}
        assert {record.provenance for record in records.values()} == {
            Provenance.SUBSCRIPTION
        }

    async def test_playlist_members_are_excluded(self, service: AccessService, seed) -> None:
        await seed.songs(1, 2, 3)
        await seed.subscription(7)
        record = await seed.ownership(7, 2)
        playlist = await seed.playlist(7)
        await seed.membership(playlist.id, record.id)

        accessible = await service.list_accessible_catalog(7, playlist.id)

        assert [item.song.id for item in accessible] == [1, 3]

    async def test_unentitled_user_sees_only_purchases(
        self, service: AccessService, seed
    ) -> None:
        await seed.songs(1, 2, 3)
        await seed.ownership(7, 3, Provenance.PURCHASED)

        accessible = await service.list_accessible_catalog(7)

        assert [item.song.id for item in accessible] == [3]
        assert accessible[0].ownership.provenance is Provenance.PURCHASED
        assert set(await seed.ownerships(7)) == {3}

    async def test_blank_audio_ref_gets_no_grant(self, service: AccessService, seed) -> None:
        """A whitespace-only audio ref is neither listed nor granted."""
        await seed.songs(1, 2)
        await seed.song(3, audio_ref="   ")
        await seed.subscription(7)

        accessible = await service.list_accessible_catalog(7)

        assert [item.song.id for item in accessible] == [1, 2]
        assert set(await seed.ownerships(7)) == {1, 2}
        assert await service.resolve_access(7, 3) is AccessOutcome.NOT_PLAYABLE

    async def test_purchased_song_that_became_unplayable_is_hidden(
        self, service: AccessService, seed
    ) -> None:
        await seed.song(1, is_active=False)
        await seed.ownership(7, 1, Provenance.PURCHASED)

        assert await service.list_accessible_catalog(7) == []

    async def test_repeated_listing_creates_no_duplicates(
        self, service: AccessService, seed
    ) -> None:
        await seed.songs(1, 2)
        await seed.subscription(7)

        await service.list_accessible_catalog(7)
        await service.list_accessible_catalog(7)

        assert set(await seed.ownerships(7)) == {1, 2}


class TestRecordPurchase:
    async def test_upgrades_existing_subscription_grant(
        self, service: AccessService, seed
    ) -> None:
        await seed.song(1)
        grant = await seed.ownership(7, 1, Provenance.SUBSCRIPTION)

        record = await service.record_purchase(7, 1, "order-42")

        assert record.id == grant.id
        assert record.provenance is Provenance.PURCHASED
        assert record.order_reference == "order-42"

    async def test_purchase_with_empty_reference_is_still_permanent(
        self, service: AccessService, seed
    ) -> None:
        await seed.song(1)

        record = await service.record_purchase(7, 1, "")

        assert record.provenance is Provenance.PURCHASED
        assert (await seed.ownerships(7))[1].is_revocable is False

    async def test_existing_purchase_is_kept(self, service: AccessService, seed) -> None:
        await seed.song(1)
        first = await seed.ownership(7, 1, Provenance.PURCHASED, "order-1")

        record = await service.record_purchase(7, 1, "order-2")

        assert record.id == first.id
        assert record.order_reference == "order-1"

    async def test_unknown_song_raises(self, service: AccessService) -> None:
        with pytest.raises(InvalidReferenceException):
            await service.record_purchase(7, 404)
