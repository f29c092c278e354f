import asyncio

from promptloom.edit_buffer import AsyncioScheduler, BufferState, EditBuffer


def _buffer(scheduler, initial="", debounce_ms=300, sync_on_blur=True):
    commits: list[str] = []
    buffer = EditBuffer(
        initial, commits.append, debounce_ms=debounce_ms, sync_on_blur=sync_on_blur, scheduler=scheduler
    )
    return buffer, commits


def test_burst_of_edits_commits_once_with_last_value(scheduler):
    buffer, commits = _buffer(scheduler)

    buffer.set_value("h")
    scheduler.advance(0.1)
    buffer.set_value("he")
    scheduler.advance(0.1)
    buffer.set_value("hey")

    assert commits == []
    assert buffer.value == "hey"
    assert buffer.state == BufferState.PENDING
    assert len(scheduler.pending) == 1

    scheduler.advance(0.3)
    assert commits == ["hey"]
    assert buffer.state == BufferState.CLEAN
    assert buffer.last_synced == "hey"
    assert not buffer.is_dirty


def test_commit_waits_full_debounce_after_last_edit(scheduler):
    buffer, commits = _buffer(scheduler, debounce_ms=500)

    buffer.set_value("a")
    scheduler.advance(0.4)
    buffer.set_value("ab")
    scheduler.advance(0.4)
    assert commits == []

    scheduler.advance(0.1)
    assert commits == ["ab"]


def test_reverting_to_synced_value_cancels_commit(scheduler):
    buffer, commits = _buffer(scheduler, initial="same")

    buffer.set_value("other")
    buffer.set_value("same")
    assert buffer.state == BufferState.CLEAN
    assert scheduler.pending == []

    scheduler.advance(1.0)
    assert commits == []


def test_commit_now_flushes_and_cancels_timer(scheduler):
    buffer, commits = _buffer(scheduler)

    buffer.set_value("draft")
    buffer.commit_now()
    assert commits == ["draft"]
    assert scheduler.pending == []

    scheduler.advance(1.0)
    assert commits == ["draft"]


def test_commit_now_on_clean_buffer_is_noop(scheduler):
    buffer, commits = _buffer(scheduler, initial="x")
    buffer.commit_now()
    assert commits == []


def test_blur_commits_when_sync_on_blur(scheduler):
    buffer, commits = _buffer(scheduler)
    buffer.set_value("typed")
    buffer.on_blur()
    assert commits == ["typed"]


def test_no_blur_handler_without_sync_on_blur(scheduler):
    buffer, commits = _buffer(scheduler, sync_on_blur=False)
    assert buffer.on_blur is None

    buffer.set_value("typed")
    scheduler.advance(0.3)
    assert commits == ["typed"]


def test_sync_external_adopted_only_when_clean(scheduler):
    buffer, commits = _buffer(scheduler, initial="one")

    assert buffer.sync_external("two") is True
    assert buffer.value == "two"
    assert buffer.last_synced == "two"

    buffer.set_value("local")
    assert buffer.sync_external("three") is False
    assert buffer.value == "local"

    scheduler.advance(0.3)
    assert commits == ["local"]


def test_discard_returns_to_last_synced(scheduler):
    buffer, commits = _buffer(scheduler, initial="kept")
    buffer.set_value("dropped")
    buffer.discard()

    assert buffer.value == "kept"
    assert buffer.state == BufferState.CLEAN
    scheduler.advance(1.0)
    assert commits == []


def test_close_flushes_then_ignores_edits(scheduler):
    buffer, commits = _buffer(scheduler)
    buffer.set_value("final")
    buffer.close()

    assert commits == ["final"]
    assert buffer.closed

    buffer.set_value("late")
    scheduler.advance(1.0)
    assert buffer.value == "final"
    assert commits == ["final"]


def test_last_synced_updated_before_callback(scheduler):
    seen = []
    buffer = None

    def on_commit(value):
        seen.append((value, buffer.last_synced, buffer.is_dirty))

    buffer = EditBuffer("", on_commit, scheduler=scheduler)
    buffer.set_value("v")
    scheduler.advance(0.3)
    assert seen == [("v", "v", False)]


def test_default_scheduler_outside_event_loop():
    commits: list[str] = []
    buffer = EditBuffer("", commits.append)

    buffer.set_value("a")
    buffer.set_value("ab")
    assert buffer.state == BufferState.PENDING
    assert commits == []

    buffer.on_blur()
    assert commits == ["ab"]
    assert buffer.state == BufferState.CLEAN


def test_asyncio_scheduler_debounces_on_running_loop():
    commits: list[str] = []

    async def typing():
        buffer = EditBuffer("", commits.append, debounce_ms=100, scheduler=AsyncioScheduler())
        for text in ("h", "he", "hey"):
            buffer.set_value(text)
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.3)
        return buffer

    buffer = asyncio.run(typing())

    assert commits == ["hey"]
    assert buffer.state == BufferState.CLEAN


def test_asyncio_commit_now_leaves_no_live_timer():
    commits: list[str] = []

    async def typing():
        buffer = EditBuffer("", commits.append, debounce_ms=20)
        buffer.set_value("saved")
        buffer.commit_now()
        await asyncio.sleep(0.1)

    asyncio.run(typing())
    assert commits == ["saved"]


def test_cancelled_asyncio_timer_never_fires():
    fired: list[bool] = []

    async def scenario():
        handle = AsyncioScheduler().call_later(0.01, lambda: fired.append(True))
        handle.cancel()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert fired == []
