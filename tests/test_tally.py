"""
Tests for the Vote Tally Controller.

These tests cover reading stored tallies, the double-vote guard, write
failures, and the behaviour of both increment policies under concurrent
voters.
"""

import asyncio
import random

import pytest

from conftest import RecordingStore, run


class TestTally:
    """Tests for the Tally value type."""

    def test_none_reads_as_zero(self):
        """A missing tally should read as zero votes each."""
        from votebook.tally import Tally

        assert Tally.from_value(None) == Tally(0, 0)

    def test_missing_and_invalid_fields_read_as_zero(self):
        """Absent, non-numeric and negative counts should read as zero."""
        from votebook.tally import Tally

        assert Tally.from_value({"yes": 3}) == Tally(3, 0)
        assert Tally.from_value({"yes": "3", "no": -2}) == Tally(0, 0)
        assert Tally.from_value({"yes": True, "no": None}) == Tally(0, 0)

    def test_float_counts_are_coerced(self):
        """Counts that come back as floats should become ints."""
        from votebook.tally import Tally

        tally = Tally.from_value({"yes": 4.0, "no": 2.0})
        assert tally == Tally(4, 2)
        assert isinstance(tally.yes, int)

    def test_total_is_derived(self):
        """The total should be yes + no."""
        from votebook.tally import Tally

        assert Tally(3, 4).total == 7

    def test_incremented(self):
        """incremented() should add one to the chosen side only."""
        from votebook.tally import Tally

        assert Tally(1, 1).incremented("yes") == Tally(2, 1)
        assert Tally(1, 1).incremented("no") == Tally(1, 2)
        with pytest.raises(ValueError):
            Tally().incremented("maybe")

    def test_increment_update_function(self):
        """The transaction update function should handle a missing tally."""
        from votebook.tally import increment

        assert increment("no")(None) == {"yes": 0, "no": 1}
        assert increment("yes")({"yes": 2.0, "no": 1.0}) == {"yes": 3, "no": 1}


class TestRemoteUpdates:
    """Tests for applying values delivered by the subscription."""

    def test_mount_reads_empty_store(self, store, guard):
        """Mounting on an empty store should show zero votes."""
        from votebook.tally import Tally, VoteTallyController

        controller = VoteTallyController(store, guard)
        controller.mount()

        assert controller.mounted
        assert controller.tally.value == Tally(0, 0)
        assert controller.total() == 0

    def test_remote_change_replaces_tally(self, store, guard):
        """Another client's write should show up locally."""
        from votebook.tally import Tally, VoteTallyController

        controller = VoteTallyController(store, guard)
        controller.mount()
        run(store.set("votes", {"yes": 7, "no": 3}))

        assert controller.tally.value == Tally(7, 3)
        assert controller.total() == 10

    def test_null_after_values_resets(self, store, guard):
        """A deleted tally should read as zero again without raising."""
        from votebook.tally import Tally, VoteTallyController

        controller = VoteTallyController(store, guard)
        controller.on_remote_tally_changed({"yes": 1, "no": 1})
        controller.on_remote_tally_changed(None)

        assert controller.tally.value == Tally(0, 0)

    def test_unmount_stops_updates(self, store, guard):
        """After unmount the tally should stop following the store."""
        from votebook.tally import Tally, VoteTallyController

        controller = VoteTallyController(store, guard)
        controller.mount()
        controller.unmount()
        run(store.set("votes", {"yes": 5, "no": 0}))

        assert not controller.mounted
        assert controller.tally.value == Tally(0, 0)

    def test_subscription_error_keeps_stale_state(self, guard):
        """A failed subscription should leave the zero tally in place."""
        from votebook.tally import Tally, VoteTallyController

        store = RecordingStore()
        store.go_offline()
        controller = VoteTallyController(store, guard)
        controller.mount()

        assert controller.tally.value == Tally(0, 0)
        assert not controller.mounted


class TestCastVote:
    """Tests for casting a vote."""

    def test_first_vote_then_second_vote(self, store, guard):
        """The first vote lands; the second is refused locally."""
        from votebook.tally import ALREADY_VOTED, Tally, VoteTallyController

        notices = []
        controller = VoteTallyController(store, guard, notify=notices.append)
        controller.mount()

        run(controller.cast_vote("yes"))

        assert controller.tally.value == Tally(1, 0)
        assert guard.is_set()
        assert controller.has_voted
        assert store.calls == [("transaction", "votes")]

        run(controller.cast_vote("no"))

        assert store.calls == [("transaction", "votes")]
        assert notices == [ALREADY_VOTED]
        assert controller.tally.value == Tally(1, 0)

    def test_guard_already_set_means_no_write(self, store, guard):
        """A device that voted earlier should issue zero writes."""
        from votebook.tally import VoteTallyController

        guard.mark()
        notices = []
        controller = VoteTallyController(store, guard, notify=notices.append)

        run(controller.cast_vote("yes"))
        run(controller.cast_vote("no"))

        assert store.calls == []
        assert len(notices) == 2
        assert store.get("votes") is None

    def test_unknown_choice_rejected_before_write(self, store, guard):
        """Only yes and no are valid choices."""
        from votebook.tally import VoteTallyController

        controller = VoteTallyController(store, guard)

        with pytest.raises(ValueError):
            run(controller.cast_vote("maybe"))
        assert store.calls == []

    def test_failed_write_leaves_guard_unset(self, store, guard):
        """When the store is unreachable the device may try again later."""
        from votebook.tally import Tally, VoteTallyController

        controller = VoteTallyController(store, guard)
        controller.mount()
        store.go_offline()

        run(controller.cast_vote("yes"))

        assert not guard.is_set()
        assert store.calls == [("transaction", "votes")]

        store.go_online()
        run(controller.cast_vote("yes"))

        assert guard.is_set()
        assert controller.tally.value == Tally(1, 0)

    def test_unwritable_guard_file_does_not_escape(self, store, tmp_path):
        """A counted vote whose guard cannot be saved should only be logged."""
        from votebook.guard import JsonFlagStore, LocalVoteGuard
        from votebook.tally import VoteTallyController

        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        guard = LocalVoteGuard(JsonFlagStore(blocker / "flags.json"), "device-1")
        controller = VoteTallyController(store, guard)

        run(controller.cast_vote("yes"))

        assert store.get("votes") == {"yes": 1, "no": 0}
        assert not guard.is_set()

    def test_vote_in_flight_rejects_second_click(self, store, guard):
        """A second click while the first vote is pending should not write."""
        from votebook.tally import VOTE_IN_FLIGHT, VoteTallyController

        notices = []
        controller = VoteTallyController(store, guard, notify=notices.append)

        async def scenario():
            await asyncio.gather(controller.cast_vote("yes"), controller.cast_vote("yes"))

        run(scenario())

        assert store.calls == [("transaction", "votes")]
        assert notices == [VOTE_IN_FLIGHT]
        assert store.get("votes") == {"yes": 1, "no": 0}

    def test_local_state_waits_for_subscription(self, guard):
        """The write itself should not touch local state; only delivery does."""
        from votebook.tally import Tally, VoteTallyController

        store = RecordingStore()
        controller = VoteTallyController(store, guard)

        # Not mounted: the vote is stored but never delivered
        run(controller.cast_vote("no"))

        assert store.get("votes") == {"yes": 0, "no": 1}
        assert controller.tally.value == Tally(0, 0)


def _voters(store, flags, count, policy):
    from votebook.guard import LocalVoteGuard
    from votebook.tally import VoteTallyController

    controllers = []
    for i in range(count):
        controller = VoteTallyController(store, LocalVoteGuard(flags, f"device-{i}"), policy=policy)
        controller.mount()
        controllers.append(controller)
    return controllers


async def _vote_after(controller, choice, delay_steps):
    for _ in range(delay_steps):
        await asyncio.sleep(0)
    await controller.cast_vote(choice)


class TestConcurrentVoters:
    """Tests for many devices voting at once on one store."""

    @pytest.mark.parametrize("seed", range(20))
    def test_transactional_policy_loses_no_votes(self, seed):
        """Every accepted vote should be counted exactly once."""
        from votebook.guard import MemoryFlagStore
        from votebook.tally import Tally, VotePolicy

        rng = random.Random(seed)
        count = rng.randint(2, 20)
        store = RecordingStore()
        flags = MemoryFlagStore()
        controllers = _voters(store, flags, count, VotePolicy.TRANSACTIONAL)
        choices = [rng.choice(["yes", "no"]) for _ in range(count)]

        async def scenario():
            await asyncio.gather(*(
                _vote_after(c, choice, rng.randint(0, 3))
                for c, choice in zip(controllers, choices)
            ))

        run(scenario())

        expected = Tally(choices.count("yes"), choices.count("no"))
        assert Tally.from_value(store.get("votes")) == expected
        assert all(c.has_voted for c in controllers)
        assert all(c.tally.value == expected for c in controllers)

    @pytest.mark.parametrize("seed", range(10))
    def test_exhausted_retries_are_not_counted(self, seed):
        """With few retries some votes fail; the tally matches the guards set."""
        from votebook.guard import MemoryFlagStore
        from votebook.tally import Tally, VotePolicy

        rng = random.Random(seed)
        count = rng.randint(6, 15)
        store = RecordingStore(max_retries=3)
        flags = MemoryFlagStore()
        controllers = _voters(store, flags, count, VotePolicy.TRANSACTIONAL)
        choices = [rng.choice(["yes", "no"]) for _ in range(count)]

        async def scenario():
            await asyncio.gather(*(c.cast_vote(choice) for c, choice in zip(controllers, choices)))

        run(scenario())

        accepted = [choice for c, choice in zip(controllers, choices) if c.has_voted]
        assert len(accepted) < count
        assert Tally.from_value(store.get("votes")) == Tally(accepted.count("yes"), accepted.count("no"))

    def test_naive_policy_loses_updates(self):
        """Voters writing back a stale tally overwrite each other."""
        from votebook.guard import MemoryFlagStore
        from votebook.tally import Tally, VotePolicy

        store = RecordingStore()
        controllers = _voters(store, MemoryFlagStore(), 5, VotePolicy.NAIVE)

        async def scenario():
            await asyncio.gather(*(c.cast_vote("yes") for c in controllers))

        run(scenario())

        assert all(c.has_voted for c in controllers)
        assert [call[0] for call in store.calls] == ["set"] * 5
        assert Tally.from_value(store.get("votes")).total < 5

    def test_naive_policy_sequential_votes_add_up(self):
        """Without overlap the naive policy still counts correctly."""
        from votebook.guard import MemoryFlagStore
        from votebook.tally import Tally, VotePolicy

        store = RecordingStore()
        controllers = _voters(store, MemoryFlagStore(), 3, VotePolicy.NAIVE)

        for c in controllers:
            run(c.cast_vote("no"))

        assert Tally.from_value(store.get("votes")) == Tally(0, 3)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
