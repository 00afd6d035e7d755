from session_context import SessionContext


class FakeSession(dict):
    permanent = False


def _user(**extra):
    user = {"username": "t1", "role": "teacher", "school_id": "SCH1", "full_name": "Tola Ade"}
    user.update(extra)
    return user


def test_anonymous_context_is_not_authenticated():
    ctx = SessionContext(FakeSession())
    assert ctx.is_authenticated is False
    assert ctx.has_role("teacher") is False
    assert ctx.persist is False


def test_start_populates_session_and_persist_flag():
    store = FakeSession(stale="value")
    ctx = SessionContext(store)
    ctx.start(_user(), persist=True)

    assert "stale" not in store
    assert ctx.user_id == "t1"
    assert ctx.role == "teacher"
    assert ctx.school_id == "SCH1"
    assert store["full_name"] == "Tola Ade"
    assert ctx.persist is True
    assert ctx.has_role("admin", "teacher") is True
    assert ctx.has_role("student") is False


def test_start_without_remember_me_is_not_persistent():
    store = FakeSession()
    ctx = SessionContext(store)
    ctx.start(_user(full_name=None))
    assert ctx.persist is False
    assert store["full_name"] == "t1"


def test_end_clears_everything_at_once():
    store = FakeSession()
    ctx = SessionContext(store)
    ctx.start(_user(), persist=True)
    ctx.end()

    assert dict(store) == {}
    assert ctx.persist is False
    assert ctx.is_authenticated is False
