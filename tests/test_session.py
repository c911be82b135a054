import asyncio

from insight_hub import session as session_mod
from insight_hub.analyzer import AnalysisError
from insight_hub.render import render_page
from insight_hub.schemas import AnalysisResult, SessionState
from insight_hub.session import (
    ANALYSIS_ERROR_MESSAGE,
    EMPTY_FILE_MESSAGE,
    READ_ERROR_MESSAGE,
    AnalysisSession,
    Failure,
    Idle,
    Loading,
    Success,
    UploadedFile,
)


def _result(summary="ok"):
    return AnalysisResult(summary=summary, anomalies=[], rootCauses=[])


def _csv(name="data.csv", text="col1,col2\nval1,val2"):
    return UploadedFile(name=name, content=text.encode("utf-8"))


def test_submit_enters_loading_then_success(monkeypatch):
    expected = _result()

    async def fake_analyze(text):
        assert text == "col1,col2\nval1,val2"
        return expected

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        s = AnalysisSession("t1")
        s.submit(_csv())
        # Loading is entered before any await.
        assert s.state == Loading(file_name="data.csv")
        await s.wait()
        return s

    s = asyncio.run(scenario())

    assert isinstance(s.state, Success)
    assert s.state.result is expected
    assert s.state.preview == [["col1", "col2"], ["val1", "val2"]]
    assert s.view().phase == "success"


def test_analysis_failure_shows_generic_message_only(monkeypatch):
    async def failing_analyze(text):
        raise AnalysisError("LLM call failed: secret-upstream-detail 401")

    monkeypatch.setattr(session_mod, "analyze_csv", failing_analyze)

    async def scenario():
        s = AnalysisSession("t2")
        s.submit(_csv())
        await s.wait()
        return s

    s = asyncio.run(scenario())

    assert s.state == Failure(file_name="data.csv", message=ANALYSIS_ERROR_MESSAGE)
    page = render_page(s.state)
    assert "Failed to analyze the data" in page
    assert "secret-upstream-detail" not in page
    assert s.view().result is None


def test_unexpected_exception_is_also_contained(monkeypatch):
    async def broken_analyze(text):
        raise KeyError("boom")

    monkeypatch.setattr(session_mod, "analyze_csv", broken_analyze)

    async def scenario():
        s = AnalysisSession("t3")
        s.submit(_csv())
        return await s.wait()

    state = asyncio.run(scenario())
    assert isinstance(state, Failure)
    assert state.message == ANALYSIS_ERROR_MESSAGE


def test_undecodable_file_never_reaches_analysis(monkeypatch):
    calls = []

    async def fake_analyze(text):
        calls.append(text)
        return _result()

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        s = AnalysisSession("t4")
        s.submit(UploadedFile(name="bin.csv", content=b"\xff\xfe\xfa\x00bad"))
        return await s.wait()

    state = asyncio.run(scenario())
    assert state == Failure(file_name="bin.csv", message=READ_ERROR_MESSAGE)
    assert calls == []


def test_empty_file_is_a_read_failure(monkeypatch):
    calls = []

    async def fake_analyze(text):
        calls.append(text)
        return _result()

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        s = AnalysisSession("t5")
        s.submit(UploadedFile(name="empty.csv", content=b""))
        return await s.wait()

    state = asyncio.run(scenario())
    assert state == Failure(file_name="empty.csv", message=EMPTY_FILE_MESSAGE)
    assert calls == []


def test_newer_submission_wins(monkeypatch):
    first_started = None
    release_first = None

    async def fake_analyze(text):
        if text.startswith("first"):
            first_started.set()
            await release_first.wait()
            return _result("first")
        return _result("second")

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        nonlocal first_started, release_first
        first_started = asyncio.Event()
        release_first = asyncio.Event()

        s = AnalysisSession("t6")
        task1 = s.submit(_csv("one.csv", "first,row"))
        await first_started.wait()
        s.submit(_csv("two.csv", "second,row"))
        release_first.set()
        await asyncio.gather(task1, return_exceptions=True)
        await s.wait()
        return s, task1

    s, task1 = asyncio.run(scenario())

    assert task1.cancelled()
    assert isinstance(s.state, Success)
    assert s.state.file_name == "two.csv"
    assert s.state.result.summary == "second"


def test_stale_completions_are_dropped(monkeypatch):
    async def fake_analyze(text):
        return _result("current")

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        s = AnalysisSession("t7")
        s.submit(_csv("old.csv"))
        old_token = s.token
        s.submit(_csv("new.csv"))
        await s.wait()

        # Late completions from the first cycle have no visible effect.
        before = s.state
        s.on_analysis_success(old_token, _result("stale"))
        s.on_analysis_failure(old_token, AnalysisError("stale"))
        s.on_read_failure(old_token)
        await s.on_text_ready(old_token, "stale,text")
        return before, s.state

    before, after = asyncio.run(scenario())
    assert after is before
    assert after.file_name == "new.csv"
    assert after.result.summary == "current"


def test_reset_during_flight_discards_result(monkeypatch):
    started = None

    async def fake_analyze(text):
        started.set()
        await asyncio.sleep(10)
        return _result()

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        nonlocal started
        started = asyncio.Event()
        s = AnalysisSession("t8")
        task = s.submit(_csv())
        await started.wait()
        s.reset()
        await asyncio.gather(task, return_exceptions=True)
        return s, task

    s, task = asyncio.run(scenario())
    assert task.cancelled()
    assert s.state == Idle()


def test_reset_from_every_state_matches_initial(monkeypatch):
    async def fake_analyze(text):
        if "fail" in text:
            raise AnalysisError("nope")
        return _result()

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)
    initial = AnalysisSession("t9").view()
    assert initial == SessionState(phase="idle")

    async def scenario():
        views = []
        s = AnalysisSession("t9")
        s.reset()
        views.append(s.view())

        s.submit(_csv())
        s.reset()
        views.append(s.view())

        s.submit(_csv())
        await s.wait()
        assert isinstance(s.state, Success)
        s.reset()
        views.append(s.view())

        s.submit(_csv(text="fail,now"))
        await s.wait()
        assert isinstance(s.state, Failure)
        s.reset()
        views.append(s.view())
        return views

    for view in asyncio.run(scenario()):
        assert view == initial


def test_resubmit_after_failure_clears_error(monkeypatch):
    outcomes = [AnalysisError("first try"), _result("retry ok")]

    async def fake_analyze(text):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        s = AnalysisSession("t10")
        s.submit(_csv())
        await s.wait()
        assert isinstance(s.state, Failure)
        s.submit(_csv())
        assert s.view().error is None
        await s.wait()
        return s.view()

    view = asyncio.run(scenario())
    assert view.phase == "success"
    assert view.error is None
    assert view.result.summary == "retry ok"


class _FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_registry_evicts_least_recently_used():
    registry = session_mod.SessionRegistry(max_sessions=3, idle_ttl_s=60, clock=_FakeClock())
    for name in ["a", "b", "c"]:
        registry.get_or_create(name)
    registry.get("a")
    registry.get_or_create("d")

    assert len(registry) == 3
    assert registry.get("b") is None
    assert registry.get("a") is not None


def test_registry_expires_idle_sessions():
    clock = _FakeClock()
    registry = session_mod.SessionRegistry(max_sessions=100, idle_ttl_s=60, clock=clock)
    kept = registry.get_or_create("kept")
    registry.get_or_create("idle")

    clock.now = 50
    registry.get("kept")
    clock.now = 100

    assert registry.get("idle") is None
    assert registry.get("kept") is kept
    assert len(registry) == 1


def test_evicted_session_cancels_its_analysis(monkeypatch):
    started = None

    async def fake_analyze(text):
        started.set()
        await asyncio.sleep(10)
        return _result()

    monkeypatch.setattr(session_mod, "analyze_csv", fake_analyze)

    async def scenario():
        nonlocal started
        started = asyncio.Event()
        registry = session_mod.SessionRegistry(max_sessions=1, idle_ttl_s=60, clock=_FakeClock())
        first = registry.get_or_create("first")
        task = first.submit(_csv())
        await started.wait()
        registry.get_or_create("second")
        await asyncio.gather(task, return_exceptions=True)
        return first, task, registry

    first, task, registry = asyncio.run(scenario())
    assert task.cancelled()
    assert first.state == Idle()
    assert registry.get("first") is None
