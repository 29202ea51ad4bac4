"""Tests for BranchStore state transitions and subscriptions."""

import dataclasses

import pytest

from branchgraph.store import BranchState, BranchStore

from conftest import make_branch, make_tree


@pytest.fixture
def store():
    return BranchStore()


@pytest.fixture
def loaded_store(store, fork_tree):
    store.load_conversation([make_branch("main"), make_branch("alt")], fork_tree)
    return store


class TestSubscribe:
    def test_called_immediately_with_current_state(self, store):
        seen = []
        store.subscribe(seen.append)
        assert seen == [store.state]

    def test_called_after_every_mutation(self, store, fork_tree):
        seen = []
        store.subscribe(seen.append)
        store.load_conversation([make_branch("main")], fork_tree)
        store.set_selected_path(["m1"])
        assert len(seen) == 3
        assert seen[-1] is store.state
        assert seen[-1].selected_path == ("m1",)

    def test_unsubscribe_stops_notifications(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        store.set_current_branch("x")
        assert len(seen) == 1
        unsubscribe()  # second call is a no-op

    def test_subscriber_may_unsubscribe_during_notification(self, store):
        calls = []
        holder = {}

        def once(state):
            calls.append(state)
            if len(calls) > 1:
                holder["unsubscribe"]()

        holder["unsubscribe"] = store.subscribe(once)
        other = []
        store.subscribe(other.append)
        store.set_current_branch("a")
        store.set_current_branch("b")
        assert len(calls) == 2
        assert len(other) == 3


class TestState:
    def test_initial_state(self, store):
        state = store.state
        assert state.current_branch_id is None
        assert state.branches == ()
        assert state.tree is None
        assert state.selected_path == ()

    def test_state_is_immutable(self, loaded_store):
        with pytest.raises(dataclasses.FrozenInstanceError):
            loaded_store.state.current_branch_id = "x"

    def test_mutation_replaces_snapshot(self, loaded_store):
        before = loaded_store.state
        loaded_store.set_selected_path(["m1", "m2"])
        assert loaded_store.state is not before
        assert before.selected_path == ()

    def test_current_branch_lookup(self, loaded_store):
        assert loaded_store.state.current_branch().id == "main"
        assert BranchState(current_branch_id="zzz").current_branch() is None


class TestLoadConversation:
    def test_defaults_current_to_first_branch(self, loaded_store, fork_tree):
        state = loaded_store.state
        assert state.current_branch_id == "main"
        assert [b.id for b in state.branches] == ["main", "alt"]
        assert state.tree is fork_tree

    def test_explicit_current_branch(self, store, fork_tree):
        store.load_conversation([make_branch("main"), make_branch("alt")], fork_tree, "alt")
        assert store.state.current_branch_id == "alt"

    def test_no_branches(self, store):
        store.load_conversation([], make_tree([]))
        assert store.state.current_branch_id is None

    def test_clears_selection(self, loaded_store, linear_tree):
        loaded_store.set_selected_path(["m1"])
        loaded_store.load_conversation([make_branch("main")], linear_tree)
        assert loaded_store.state.selected_path == ()

    def test_reset(self, loaded_store):
        loaded_store.reset()
        assert loaded_store.state == BranchState()

    def test_clears_stale_flag(self, loaded_store, fork_tree):
        loaded_store.mark_stale()
        loaded_store.load_conversation([make_branch("main")], fork_tree)
        assert loaded_store.state.stale is False


class TestFieldUpdates:
    def test_set_tree_keeps_other_fields(self, loaded_store, linear_tree):
        loaded_store.set_selected_path(["m1"])
        loaded_store.set_tree(linear_tree)
        state = loaded_store.state
        assert state.tree is linear_tree
        assert state.current_branch_id == "main"
        assert state.selected_path == ("m1",)

    def test_set_branches(self, loaded_store):
        loaded_store.set_branches([make_branch("only")])
        assert [b.id for b in loaded_store.state.branches] == ["only"]

    def test_add_branch(self, loaded_store):
        loaded_store.add_branch(make_branch("new"))
        assert [b.id for b in loaded_store.state.branches] == ["main", "alt", "new"]

    def test_remove_current_branch_promotes_nothing(self, loaded_store):
        loaded_store.remove_branch("main")
        state = loaded_store.state
        assert [b.id for b in state.branches] == ["alt"]
        assert state.current_branch_id is None

    def test_remove_other_branch_keeps_current(self, loaded_store):
        loaded_store.remove_branch("alt")
        assert loaded_store.state.current_branch_id == "main"

    def test_update_branch_name(self, loaded_store):
        original = loaded_store.state.branches[1]
        loaded_store.update_branch_name("alt", "Experiment")
        branches = loaded_store.state.branches
        assert branches[1].name == "Experiment"
        assert branches[1].id == "alt"
        assert original.name == "alt"
        assert branches[0].name == "main"

    def test_mark_stale(self, loaded_store, linear_tree):
        seen = []
        loaded_store.subscribe(seen.append)
        loaded_store.mark_stale()
        assert seen[-1].stale is True
        assert loaded_store.state.tree is not None

        loaded_store.set_tree(linear_tree)
        assert loaded_store.state.stale is True
