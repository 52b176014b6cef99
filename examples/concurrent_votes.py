"""
Votebook Concurrency Demo - Lost Updates

Many devices vote at the same moment against one store with simulated
network latency. The transactional policy counts every vote; the naive
policy writes back stale tallies and loses most of them.

Run: python examples/concurrent_votes.py
"""

import asyncio
import os
import random
import sys
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

from votebook.guard import LocalVoteGuard, MemoryFlagStore
from votebook.store import RealtimeStore
from votebook.tally import Tally, VotePolicy, VoteTallyController


async def run_policy(policy: VotePolicy, voters: int, latency: float) -> None:
    store = RealtimeStore(latency=latency, max_retries=voters + 5)
    flags = MemoryFlagStore()
    controllers = []
    for i in range(voters):
        controller = VoteTallyController(store, LocalVoteGuard(flags, f"device-{i}"), policy=policy)
        controller.mount()
        controllers.append(controller)

    choices = [random.choice(["yes", "no"]) for _ in range(voters)]

    start = time.perf_counter()
    await asyncio.gather(*(c.cast_vote(choice) for c, choice in zip(controllers, choices)))
    elapsed = time.perf_counter() - start

    stored = Tally.from_value(store.get("votes"))
    accepted = sum(1 for c in controllers if c.has_voted)
    print(f"{policy.value:>14}: {accepted} votes accepted, {stored.total} counted "
          f"(yes={stored.yes}, no={stored.no}) in {elapsed * 1000:.1f} ms")
    if stored.total != accepted:
        print(f"{'':>14}  {accepted - stored.total} votes lost to overwrites")


async def main() -> None:
    voters = 50
    latency = 0.005
    print("=" * 60)
    print(f"{voters} devices voting at once, {latency * 1000:.0f} ms simulated latency")
    print("=" * 60)
    await run_policy(VotePolicy.TRANSACTIONAL, voters, latency)
    await run_policy(VotePolicy.NAIVE, voters, latency)


if __name__ == "__main__":
    asyncio.run(main())
