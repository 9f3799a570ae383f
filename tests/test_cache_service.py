from travelpi.services.cache_service import CacheService


def test_round_trip_with_ttl(fake_redis):
    cache = CacheService(fake_redis)

    assert cache.set("hotels:1", {"id": 1, "name": "Canal House"}, ttl=60) is True

    assert cache.get("hotels:1") == {"id": 1, "name": "Canal House"}
    assert fake_redis.expiry["travelpi:hotels:1"] == 60


def test_miss_returns_none(fake_redis):
    assert CacheService(fake_redis).get("hotels:404") is None


def test_delete(fake_redis):
    cache = CacheService(fake_redis)
    cache.set("hotels:1", {"id": 1}, ttl=60)

    cache.delete("hotels:1")

    assert cache.get("hotels:1") is None


def test_errors_degrade_to_miss(broken_redis):
    cache = CacheService(broken_redis)

    assert cache.get("hotels:1") is None
    assert cache.set("hotels:1", {"id": 1}, ttl=60) is False
    assert cache.delete("hotels:1") is False
