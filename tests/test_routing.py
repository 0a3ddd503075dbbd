"""
Tests for the channel router.

Covers:
- Channel name validation
- Handle creation and identity
- Handler resolution (explicit ancestry replaces defaults)
- Processor resolution (defaults plus every ancestor, in order)
- enabled/level inheritance
- Cache invalidation and live handle rebinding
- Status, flush_all and close_all
"""

import threading

import pytest

from chanlog.logger.handlers import CollectorHandler, FileHandler
from chanlog.logger.routing import ChannelRouter, channel_prefixes, validate_channel_name


def named(name):
    def processor(record):
        return record.with_changes(extra={**record.extra, name: True})
    processor.__name__ = name
    return processor


@pytest.fixture
def collector():
    return CollectorHandler(name="collector")


@pytest.fixture
def file_handler(tmp_path):
    return FileHandler(name="file", path=tmp_path / "app.log")


@pytest.fixture
def router(collector):
    return ChannelRouter(default_handlers=[collector], include_stack_traces=False)


# ═══════════════════════════════════════════════════════════════════
#  Channel Names
# ═══════════════════════════════════════════════════════════════════

class TestChannelNames:
    @pytest.mark.parametrize("name", ["app", "app.http", "a-b.c_d.E9"])
    def test_valid(self, name):
        assert validate_channel_name(name) == name

    @pytest.mark.parametrize("name", ["", "app.", ".app", "app..http", "app http", "app\n", "ä"])
    def test_invalid(self, name):
        with pytest.raises(ValueError, match="Invalid channel name"):
            validate_channel_name(name)

    def test_non_string(self):
        with pytest.raises(ValueError):
            validate_channel_name(None)

    def test_prefixes(self):
        assert channel_prefixes("a.b.c") == ["a", "a.b", "a.b.c"]
        assert channel_prefixes("a") == ["a"]

    def test_router_rejects_invalid(self, router):
        with pytest.raises(ValueError):
            router.channel("bad name")


# ═══════════════════════════════════════════════════════════════════
#  Handles
# ═══════════════════════════════════════════════════════════════════

class TestHandles:
    def test_channel_is_idempotent(self, router):
        assert router.channel("app.http") is router.channel("app.http")

    def test_get_alias(self, router):
        assert router.get("app") is router.channel("app")

    def test_emit(self, router, collector):
        router.emit("app", "notice", "hello", {"a": 1})
        assert collector.records[0].message == "hello"

    def test_channels_listing(self, router, file_handler):
        router.channel("zeta")
        router.set_channel_handlers("app", [file_handler])
        router.configure_channel("db", level="error")
        assert router.channels() == ["app", "db", "zeta"]
        assert router.has_channel("db")
        assert not router.has_channel("nope")


# ═══════════════════════════════════════════════════════════════════
#  Handler Resolution
# ═══════════════════════════════════════════════════════════════════

class TestHandlerResolution:
    def test_defaults_without_explicit_entries(self, router, collector):
        assert router.resolve_handlers("app.http.client") == (collector,)

    def test_ancestor_entry_replaces_defaults(self, router, collector, file_handler):
        router.set_channel_handlers("app", [file_handler])
        assert router.resolve_handlers("app.http") == (file_handler,)

        router.emit("app.http", "error", "boom", {"host": "db1"})
        assert collector.count == 0
        file_handler.flush()
        assert file_handler.base_path.read_text().count("boom") == 1
        file_handler.close()

    def test_concatenated_shortest_prefix_first(self, router):
        a = CollectorHandler(name="a")
        ab = CollectorHandler(name="ab")
        abc = CollectorHandler(name="abc")
        router.set_channel_handlers("a.b.c", [abc])
        router.set_channel_handlers("a", [a])
        router.set_channel_handlers("a.b", [ab])
        assert router.resolve_handlers("a.b.c") == (a, ab, abc)
        assert router.resolve_handlers("a.b") == (a, ab)
        assert router.resolve_handlers("a.x") == (a,)

    def test_empty_list_silences_subtree(self, router, collector):
        router.set_channel_handlers("quiet", [])
        assert router.resolve_handlers("quiet.child") == ()
        router.channel("quiet.child").error("nobody hears")
        assert collector.count == 0

    def test_sibling_unaffected(self, router, collector, file_handler):
        router.set_channel_handlers("app", [file_handler])
        assert router.resolve_handlers("billing") == (collector,)

    def test_add_channel_handler(self, router):
        extra = CollectorHandler(name="extra")
        router.add_channel_handler("app", extra)
        router.add_channel_handler("app", extra)
        assert router.resolve_handlers("app") == (extra, extra)

    def test_set_default_handler_single(self, router):
        other = CollectorHandler(name="other")
        router.set_default_handler(other)
        assert router.resolve_handlers("x") == (other,)

    def test_add_default_handler(self, router, collector):
        other = CollectorHandler(name="other")
        router.add_default_handler(other)
        assert router.resolve_handlers("x") == (collector, other)

    def test_rejects_non_handler(self, router):
        with pytest.raises(TypeError, match="Not a handler"):
            router.set_channel_handlers("app", [object()])
        with pytest.raises(TypeError):
            router.set_channel_handlers("app", "collector")

    def test_shared_handler_instance(self, router):
        shared = CollectorHandler(name="shared")
        router.set_channel_handlers("a", [shared])
        router.set_channel_handlers("b", [shared])
        router.channel("a").info("from a")
        router.channel("b").info("from b")
        assert [r.channel for r in shared.records] == ["a", "b"]


# ═══════════════════════════════════════════════════════════════════
#  Processor Resolution
# ═══════════════════════════════════════════════════════════════════

class TestProcessorResolution:
    def test_additive_in_order(self, collector):
        d, a, ab, abc = named("d"), named("a"), named("ab"), named("abc")
        router = ChannelRouter(default_handlers=[collector], default_processors=[d])
        router.set_channel_processors("a.b.c", [abc])
        router.set_channel_processors("a", [a])
        router.set_channel_processors("a.b", [ab])
        assert router.resolve_processors("a.b.c") == (d, a, ab, abc)
        assert router.resolve_processors("a") == (d, a)
        assert router.resolve_processors("other") == (d,)

    def test_defaults_kept_with_explicit_handlers(self, collector, file_handler):
        d = named("d")
        router = ChannelRouter(default_handlers=[collector], default_processors=[d])
        router.set_channel_handlers("app", [file_handler])
        assert router.resolve_processors("app.http") == (d,)

    def test_processors_applied(self, router, collector):
        router.add_channel_processor("app", named("tagged"))
        router.channel("app.http").info("m")
        router.channel("other").info("m")
        assert collector.records[0].extra["tagged"] is True
        assert "tagged" not in collector.records[1].extra

    def test_set_and_add_default_processor(self, router):
        first, second = named("first"), named("second")
        router.set_default_processor(first)
        router.add_default_processor(second)
        assert router.resolve_processors("x") == (first, second)

    def test_rejects_non_callable(self, router):
        with pytest.raises(TypeError, match="Not a processor"):
            router.set_channel_processors("app", [42])


# ═══════════════════════════════════════════════════════════════════
#  Channel Settings
# ═══════════════════════════════════════════════════════════════════

class TestChannelSettings:
    def test_defaults(self, router):
        assert router.channel_settings("app") == {"enabled": True, "level": "DEBUG"}

    def test_longest_prefix_wins(self, router):
        router.configure_channel("app", level="warning")
        router.configure_channel("app.http", level="debug")
        assert router.channel_settings("app.http.client")["level"] == "DEBUG"
        assert router.channel_settings("app.db")["level"] == "WARNING"

    def test_enabled_inherits(self, router):
        router.configure_channel("app", enabled=False)
        router.configure_channel("app.audit", enabled=True)
        assert router.channel_settings("app.http")["enabled"] is False
        assert router.channel_settings("app.audit.x")["enabled"] is True

    def test_live_handle_follows(self, router, collector):
        log = router.channel("app.http")
        router.configure_channel("app", level="error")
        log.warning("dropped")
        log.error("kept")
        assert [r.message for r in collector.records] == ["kept"]


# ═══════════════════════════════════════════════════════════════════
#  Invalidation
# ═══════════════════════════════════════════════════════════════════

class TestInvalidation:
    def test_live_handle_rebinds(self, router, collector):
        log = router.channel("app.http")
        fresh = CollectorHandler(name="fresh")
        router.set_channel_handlers("app", [fresh])
        log.info("m")
        assert collector.count == 0
        assert fresh.count == 1

    def test_unrelated_change_keeps_resolution(self, router, file_handler):
        router.set_channel_handlers("app", [file_handler])
        router.add_channel_processor("app", named("p"))
        before = router.resolve("app.http")
        router.set_channel_handlers("billing", [CollectorHandler(name="billing")])
        router.add_channel_processor("billing", named("q"))
        router.configure_channel("billing", level="error")
        after = router.resolve("app.http")
        assert after == before

    def test_replacing_handlers_creates_new_handle(self, router):
        old = router.channel("app")
        router.set_channel_handlers("app", [CollectorHandler(name="new")])
        new = router.channel("app")
        assert new is not old
        assert old.closed
        assert router.channel("app") is new

    def test_resolution_cached(self, router):
        first = router.resolve("app")
        assert router.resolve("app") is first
        assert router.status()["cached_resolutions"] >= 1


# ═══════════════════════════════════════════════════════════════════
#  Status & Cleanup
# ═══════════════════════════════════════════════════════════════════

class TestRouterStatus:
    def test_status(self, router, file_handler):
        router.set_channel_handlers("app", [file_handler])
        router.channel("billing")
        status = router.status()
        assert status["default_handlers"] == ["collector"]
        assert status["channels"]["app"]["handlers"] == ["file"]
        assert status["channels"]["billing"]["handlers"] is None
        assert "billing" in status["live_handles"]

    def test_close_all(self, router):
        log = router.channel("app")
        router.close_all()
        assert log.closed
        assert router.channel("app") is not log

    def test_flush_all(self, router, file_handler):
        router.set_channel_handlers("app", [file_handler])
        router.channel("app").info("flushed")
        router.flush_all()
        assert "flushed" in file_handler.base_path.read_text()
        file_handler.close()

    def test_global_context_read_only(self, router):
        router.set_global_context({"a": 1})
        with pytest.raises(TypeError):
            router.global_context["b"] = 2

    def test_set_global_context_waits_for_lock(self, router):
        router._lock.acquire()
        writer = threading.Thread(target=router.set_global_context, args=({"a": 1},))
        try:
            writer.start()
            writer.join(timeout=0.2)
            assert writer.is_alive()
            assert dict(router.global_context) == {}
        finally:
            router._lock.release()
        writer.join()
        assert dict(router.global_context) == {"a": 1}

    def test_concurrent_global_context_writes(self, router):
        def add(i):
            router.add_global_context(f"k{i}", i)

        threads = [threading.Thread(target=add, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(router.global_context) == 20
