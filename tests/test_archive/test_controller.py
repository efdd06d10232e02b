"""Tests for the archive controller."""

import threading
import time

import pytest

from tabstash.archive import controller as controller_module
from tabstash.archive.controller import ArchiveController
from tabstash.archive.favicons import fallback_favicon
from tabstash.archive.repository import base_domain
from tabstash.archive.tab_list import TabList
from tabstash.archive.types import GroupDeletion
from tabstash.infrastructure.database import SchemaManager
from tabstash.infrastructure.errors import DatabaseOpenError, InvalidGroupError, InvalidUrlError, QueryError


@pytest.fixture
def controller(lookup, preferences):
    controller = ArchiveController(SchemaManager(":memory:"), lookup=lookup, preferences=preferences)
    yield controller
    controller.close()


class TestReadiness:
    @pytest.mark.asyncio
    async def test_ready_is_shared(self, controller):
        assert controller.ready is controller.ready
        store = await controller.ready
        assert store is await controller.ready

    @pytest.mark.asyncio
    async def test_open_failure_surfaces_from_every_operation(self, tmp_path, lookup):
        controller = ArchiveController(SchemaManager(tmp_path), lookup=lookup)

        with pytest.raises(DatabaseOpenError):
            await controller.get_archive()
        with pytest.raises(DatabaseOpenError):
            await controller.create_session()
        with pytest.raises(DatabaseOpenError):
            await controller.delete_all()


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_session(self, controller):
        session_id = await controller.create_session()
        assert session_id is not None

    @pytest.mark.asyncio
    async def test_create_and_delete_tab(self, controller):
        session_id = await controller.create_session()
        await controller.create_tab("http://example.com", "I am an Example!", session_id)

        store = await controller.ready
        tabs = store.get_tabs_for_sessions([session_id])
        assert len(tabs[session_id]) == 1
        assert tabs[session_id][0].url == "http://example.com"

        await controller.delete_tab(tabs[session_id][0].id)
        tabs = store.get_tabs_for_sessions([session_id])
        assert tabs[session_id] == []


class TestGetArchive:
    @pytest.mark.asyncio
    async def test_read_model_shape(self, controller, lookup):
        lookup.failing.add("https://b.com")
        session_id = await controller.save_tab_list(
            [{"url": "https://a.com", "title": "A"}, {"url": "https://b.com", "title": "B"}]
        )

        view = await controller.get_archive()

        assert view.grouping_mode == "session"
        assert [group.id for group in view.groups] == [session_id]
        tabs = view.tabs[session_id]
        assert [tab.url for tab in tabs] == ["https://b.com", "https://a.com"]
        assert tabs[0].favicon == fallback_favicon("https://b.com")
        assert tabs[1].favicon.startswith("data:image/png;base64,")

        dumped = view.model_dump()
        assert set(dumped) == {"groups", "tabs", "grouping_mode"}
        assert set(dumped["groups"][0]) == {"id", "timestamp", "name"}

    @pytest.mark.asyncio
    async def test_empty_archive(self, controller):
        view = await controller.get_archive()
        assert view.groups == []
        assert view.tabs == {}

    @pytest.mark.asyncio
    async def test_by_domain(self, controller):
        await controller.save_tab_list(
            [("https://mail.mozilla.org/", "Mail"), ("https://developer.mozilla.org/", "MDN"), ("https://a.com/", "A")]
        )

        view = await controller.get_archive_by_domain()

        assert view.grouping_mode == "domain"
        assert [group.name for group in view.groups] == ["a.com", "mozilla.org"]
        assert [tab.title for tab in view.tabs["mozilla.org"]] == ["MDN", "Mail"]


class TestSaveTabList:
    @pytest.mark.asyncio
    async def test_creates_one_session(self, controller):
        session_id = await controller.save_tab_list(
            [{"url": "https://a.com", "title": "A"}, {"url": "https://b.com", "title": "B"}]
        )

        store = await controller.ready
        assert [s.id for s in store.get_sessions()] == [session_id]
        tabs = store.get_tabs_for_sessions([session_id])[session_id]
        # Newest first: insertion order matches input order.
        assert [tab.title for tab in tabs] == ["B", "A"]

    @pytest.mark.asyncio
    async def test_appends_to_existing_session(self, controller):
        session_id = await controller.create_session()
        returned = await controller.save_tab_list([("https://a.com", "A")], existing_session_id=session_id)

        assert returned == session_id
        store = await controller.ready
        assert len(store.get_sessions()) == 1
        assert len(store.get_tabs_for_sessions([session_id])[session_id]) == 1

    @pytest.mark.asyncio
    async def test_uses_tab_list_session(self, controller):
        session_id = await controller.create_session()
        tab_list = TabList(session_id=session_id)
        tab_list.push("https://a.com", "A")

        assert await controller.save_tab_list(tab_list) == session_id

    @pytest.mark.asyncio
    async def test_preserves_order_for_many_tabs(self, controller):
        entries = [(f"https://site{i % 3}.com/page{i}", f"Page {i}") for i in range(12)]
        session_id = await controller.save_tab_list(entries)

        store = await controller.ready
        tabs = store.get_tabs_for_sessions([session_id])[session_id]
        assert [tab.title for tab in reversed(tabs)] == [title for _, title in entries]
        assert len(store.get_domains()) == 3

    @pytest.mark.asyncio
    async def test_nothing_to_save(self, controller):
        assert await controller.save_tab_list([]) is None
        store = await controller.ready
        assert store.get_sessions() == []

    @pytest.mark.asyncio
    async def test_invalid_url_leaves_no_session(self, controller):
        with pytest.raises(InvalidUrlError):
            await controller.save_tab_list([("https://a.com", "A"), ("about:blank", "Blank")])
        store = await controller.ready
        assert store.get_sessions() == []

    @pytest.mark.asyncio
    async def test_domain_resolution_is_bounded(self, controller, preferences, monkeypatch):
        lock = threading.Lock()
        active = 0
        peak = 0

        def slow_base_domain(url):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1
            return base_domain(url)

        monkeypatch.setattr(controller_module, "base_domain", slow_base_domain)
        entries = [(f"https://site{i}.com/", f"Site {i}") for i in range(8)]

        session_id = await controller.save_tab_list(entries)

        assert 1 < peak <= preferences.save_concurrency
        store = await controller.ready
        tabs = store.get_tabs_for_sessions([session_id])[session_id]
        assert [tab.title for tab in reversed(tabs)] == [title for _, title in entries]

    @pytest.mark.asyncio
    async def test_failed_write_leaves_nothing_behind(self, controller):
        with pytest.raises(QueryError):
            await controller.save_tab_list([("https://a.com", "A")], existing_session_id=999)
        store = await controller.ready
        assert store.get_domains() == []
        assert store.get_sessions() == []


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_group_leaves_others(self, controller):
        target = await controller.save_tab_list([("https://a.com", "A"), ("https://b.com", "B")])
        other = await controller.save_tab_list([("https://c.com", "C")])
        store = await controller.ready
        tab_ids = [tab.id for tab in store.get_tabs_for_sessions([target])[target]]

        await controller.delete_group({"grouping": "session", "id": target, "tab_ids": tab_ids})

        assert [s.id for s in store.get_sessions()] == [other]
        tabs = store.get_tabs_for_sessions([target, other])
        assert tabs[target] == []
        assert len(tabs[other]) == 1

    @pytest.mark.asyncio
    async def test_delete_group_by_domain(self, controller):
        await controller.save_tab_list([("https://a.com/1", "A1"), ("https://a.com/2", "A2"), ("https://b.com", "B")])
        store = await controller.ready
        tab_ids = [tab.id for tab in store.get_tabs_for_domains(["a.com"])["a.com"]]

        await controller.delete_group(GroupDeletion(grouping="domain", id="a.com", tab_ids=tab_ids))

        assert [domain.name for domain in store.get_domains()] == ["b.com"]

    @pytest.mark.asyncio
    async def test_delete_all(self, controller):
        session_id = await controller.save_tab_list([("https://a.com", "A")])

        await controller.delete_all()

        store = await controller.ready
        assert store.get_sessions() == []
        assert store.get_tabs_for_sessions([session_id]) == {session_id: []}


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_keeps_tab_by_default(self, controller):
        session_id = await controller.save_tab_list([("https://a.com", "A")])
        store = await controller.ready
        tab_id = store.get_tabs_for_sessions([session_id])[session_id][0].id

        request = await controller.restore_tab(tab_id)

        assert request.urls == ["https://a.com"]
        assert request.in_background is False
        assert request.removed is False
        assert len(store.get_tabs_for_sessions([session_id])[session_id]) == 1

    @pytest.mark.asyncio
    async def test_restore_group_removes_when_preferred(self, lookup, preferences):
        preferences.remove_after_restore = True
        preferences.open_in_background = True
        controller = ArchiveController(SchemaManager(":memory:"), lookup=lookup, preferences=preferences)
        try:
            session_id = await controller.save_tab_list([("https://a.com", "A"), ("https://b.com", "B")])
            store = await controller.ready
            tab_ids = [tab.id for tab in reversed(store.get_tabs_for_sessions([session_id])[session_id])]

            request = await controller.restore_group({"grouping": "session", "id": session_id, "tab_ids": tab_ids})

            assert request.urls == ["https://a.com", "https://b.com"]
            assert request.in_background is True
            assert request.removed is True
            assert store.get_sessions() == []
        finally:
            controller.close()

    @pytest.mark.asyncio
    async def test_restore_unknown_tab(self, lookup, preferences):
        preferences.remove_after_restore = True
        controller = ArchiveController(SchemaManager(":memory:"), lookup=lookup, preferences=preferences)
        try:
            request = await controller.restore_tab(42)
            assert request.urls == []
            assert request.removed is False
        finally:
            controller.close()

    @pytest.mark.asyncio
    async def test_restore_group_rejects_non_numeric_session(self, controller):
        with pytest.raises(InvalidGroupError):
            await controller.restore_group({"grouping": "session", "id": "abc", "tab_ids": []})
