"""TTL and invalidation behaviour of the read-through badge cache."""

from __future__ import annotations

from lumi.cache import BADGES, USER_ID, BadgeCache
from lumi.models import Badge


def test_entry_is_served_until_ttl_elapses(cache: BadgeCache, clock) -> None:
    cache.put_user_id("Ivan", "user-1")
    clock.advance(299)
    assert cache.get_user_id("Ivan") == "user-1"

    clock.advance(1)
    assert cache.get_user_id("Ivan") is None
    assert len(cache) == 0


def test_invalidate_badges_keeps_user_id(cache: BadgeCache) -> None:
    cache.put_user_id("Ivan", "user-1")
    cache.put_badges("Ivan", [Badge(name="Star")])

    cache.invalidate_badges("Ivan")

    assert cache.get_badges("Ivan") is None
    assert cache.get_user_id("Ivan") == "user-1"


def test_invalidate_without_kind_drops_every_entry_for_user(cache: BadgeCache) -> None:
    cache.put(USER_ID, "Ivan", "user-1")
    cache.put(BADGES, "Ivan", [])
    cache.put(USER_ID, "Maria", "user-2")

    cache.invalidate("Ivan")

    assert cache.get(USER_ID, "Ivan") is None
    assert cache.get(BADGES, "Ivan") is None
    assert cache.get(USER_ID, "Maria") == "user-2"


def test_clear_empties_the_cache(cache: BadgeCache) -> None:
    cache.put_user_id("Ivan", "user-1")
    cache.put_badges("Maria", [Badge(name="Moon")])

    cache.clear()

    assert len(cache) == 0
    assert cache.get_badges("Maria") is None


def test_cached_badge_list_is_isolated_from_callers(cache: BadgeCache) -> None:
    badges = [Badge(name="Star")]
    cache.put_badges("Ivan", badges)
    badges.append(Badge(name="Moon"))

    cached = cache.get_badges("Ivan")
    assert cached is not None
    assert [badge.name for badge in cached] == ["Star"]
    cached.append(Badge(name="Sun"))
    assert [badge.name for badge in cache.get_badges("Ivan") or []] == ["Star"]


def test_read_started_before_invalidation_is_not_stored(cache: BadgeCache) -> None:
    token = cache.generation("Ivan")
    cache.invalidate_badges("Ivan")

    stored = cache.put_badges("Ivan", [Badge(name="Stale")], generation=token)

    assert stored is False
    assert cache.get_badges("Ivan") is None


def test_read_started_before_clear_is_not_stored(cache: BadgeCache) -> None:
    token = cache.generation("Ivan")
    cache.clear()

    assert cache.put_badges("Ivan", [Badge(name="Stale")], generation=token) is False
    assert cache.put_badges("Ivan", [Badge(name="Fresh")], generation=cache.generation("Ivan")) is True


def test_zero_ttl_disables_caching(clock) -> None:
    cache = BadgeCache(ttl_seconds=0, clock=clock)
    cache.put_user_id("Ivan", "user-1")
    assert cache.get_user_id("Ivan") is None
