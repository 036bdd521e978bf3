"""Tests for the listing cache."""
from noteplan_mcp.services.listing_cache import ListingCache


class TestListingCache:
    """TTL behaviour and invalidation."""

    def test_key_ignores_none_filters(self):
        assert ListingCache.make_key("notes", folder=None, space="s1") == ListingCache.make_key(
            "notes", space="s1"
        )
        assert ListingCache.make_key("notes", space="s1") != ListingCache.make_key(
            "notes", space="s2"
        )

    def test_entries_expire(self, listing_cache, fake_clock):
        listing_cache.set("k", ["a"], ttl=5)
        assert listing_cache.get("k") == ["a"]
        fake_clock.advance(5)
        assert listing_cache.get("k") is None
        assert listing_cache.hits == 1
        assert listing_cache.misses == 1

    def test_get_or_load_calls_loader_once(self, listing_cache):
        calls = []

        def loader():
            calls.append(1)
            return ["note"]

        assert listing_cache.get_or_load("k", 5, loader) == ["note"]
        assert listing_cache.get_or_load("k", 5, loader) == ["note"]
        assert len(calls) == 1

    def test_invalidate_all(self, listing_cache):
        listing_cache.set("a", 1, ttl=60)
        listing_cache.set("b", 2, ttl=60)
        assert len(listing_cache) == 2
        listing_cache.invalidate_all()
        assert len(listing_cache) == 0
        assert listing_cache.get("a") is None

    def test_load_interrupted_by_write_is_not_stored(self, listing_cache):
        """A listing taken before a write must not be served after it."""
        notes = ["old"]

        def loader():
            snapshot = list(notes)
            # A write lands while the listing is being built
            notes.append("new")
            listing_cache.invalidate_all()
            return snapshot

        assert listing_cache.get_or_load("k", 60, loader) == ["old"]
        assert len(listing_cache) == 0
        assert listing_cache.get_or_load("k", 60, lambda: list(notes)) == ["old", "new"]
        assert len(listing_cache) == 1
