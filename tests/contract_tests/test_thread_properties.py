"""
Property Tests for Thread Engine Invariants

Random operation sequences against a fresh engine per example.
"""

from hypothesis import given, settings, strategies as st
from hypothesis.strategies import composite

from thread_engine.contracts.facts import EntityRef
from thread_engine.contracts.schema import OPEN_THREAD, SUBSCRIBED_THREAD

from ..fixtures import at, make_engine, post, seed_group

USERS = ("alice", "bob", "carol")
THREADS = ("th1", "th2")


# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

@composite
def operations(draw):
    """One user-level operation: hide, show, bump or post."""
    kind = draw(st.sampled_from(("hide", "show", "bump", "post", "unsubscribe")))
    user = draw(st.sampled_from(USERS))
    thread = draw(st.sampled_from(THREADS))
    minute = draw(st.integers(min_value=-600, max_value=600))
    return kind, user, thread, minute


def apply_operation(engine, op, counter):
    kind, user, thread, minute = op
    if kind == "hide":
        engine.hide_thread(user, thread)
    elif kind == "show":
        engine.show_thread(user, thread)
    elif kind == "bump":
        engine.bump_last_open(user, thread)
    elif kind == "unsubscribe":
        engine.unsubscribe(user, thread)
    else:
        post(engine, f"m{counter}", thread, "g1", user, at(minutes=minute))


def fresh_engine():
    engine = make_engine()
    seed_group(engine, "g1", USERS, tag_ids=["design"])
    return engine


# =============================================================================
# PROPERTY TESTS
# =============================================================================

@settings(max_examples=50, deadline=None)
@given(st.lists(operations(), max_size=25))
def test_last_open_never_decreases(ops):
    engine = fresh_engine()
    previous = {(u, t): engine.last_open_at(t, u) for u in USERS for t in THREADS}

    for i, op in enumerate(ops):
        apply_operation(engine, op, i)
        for key, before in previous.items():
            user, thread = key
            now = engine.last_open_at(thread, user)
            assert now.value >= before.value
            previous[key] = now


@settings(max_examples=50, deadline=None)
@given(st.lists(operations(), max_size=25), st.sampled_from(USERS), st.sampled_from(THREADS))
def test_subscribed_user_can_see_thread(ops, user, thread):
    engine = fresh_engine()
    for i, op in enumerate(ops):
        apply_operation(engine, op, i)

    if user in engine.users_subscribed_to_thread(thread):
        assert engine.can_user_see_thread(user, thread)


@settings(max_examples=50, deadline=None)
@given(st.text(min_size=1, max_size=12), st.sampled_from(USERS + ("stranger",)))
def test_thread_without_facts_is_visible(thread_id, user):
    engine = fresh_engine()
    assert engine.can_user_see_thread(user, "new-" + thread_id)


@settings(max_examples=30, deadline=None)
@given(st.lists(operations(), max_size=15), st.sampled_from(THREADS))
def test_tagging_twice_equals_tagging_once(ops, thread):
    engine = fresh_engine()
    for i, op in enumerate(ops):
        apply_operation(engine, op, i)

    engine.tag_thread("g1", thread, "design")
    basis = engine.store.basis
    subscribed = engine.users_subscribed_to_thread(thread)
    opened = engine.users_with_thread_open(thread)

    assert engine.tag_thread("g1", thread, "design").is_noop
    assert engine.store.basis == basis
    assert engine.users_subscribed_to_thread(thread) == subscribed
    assert engine.users_with_thread_open(thread) == opened
    assert engine.thread_by_id(thread).tag_ids == frozenset({"design"})


@settings(max_examples=30, deadline=None)
@given(st.lists(operations(), max_size=15), st.sampled_from(THREADS))
def test_fan_out_leaves_existing_subscribers_alone(ops, thread):
    engine = fresh_engine()
    for i, op in enumerate(ops):
        apply_operation(engine, op, i)

    subscribed_before = engine.users_subscribed_to_thread(thread)
    history_before = {
        u: engine.store.history_of(OPEN_THREAD, EntityRef.user(u)) for u in subscribed_before
    }

    engine.tag_thread("g1", thread, "design")

    for user in USERS:
        if user in subscribed_before:
            assert engine.store.history_of(OPEN_THREAD, EntityRef.user(user)) == history_before[user]
        else:
            assert user in engine.users_subscribed_to_thread(thread)
            assert user in engine.users_with_thread_open(thread)
            subs = engine.store.history_of(SUBSCRIBED_THREAD, EntityRef.user(user))
            assert subs[-1].added


@settings(max_examples=30, deadline=None)
@given(st.lists(operations(), max_size=20))
def test_recent_threads_sorted_descending(ops):
    engine = fresh_engine()
    for i, op in enumerate(ops):
        apply_operation(engine, op, i)

    threads = engine.recent_threads("alice", "g1", window_days=3650, now=at(days=1))
    newest = [t.newest_message_at.value for t in threads]
    assert newest == sorted(newest, reverse=True)
