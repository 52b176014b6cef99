"""
Votebook Demo

Serves the voting widget with its guestbook.
Open the page in several browser profiles to simulate several devices;
each profile keeps its own device id, so each can vote once.

Run:
    python examples/vote_demo.py

Then open http://localhost:8000 in multiple browsers.
Settings come from VOTEBOOK_* environment variables, for example:

    VOTEBOOK_YES_LABEL="Gets fired" VOTEBOOK_NO_LABEL="Keeps the job" \
    VOTEBOOK_GUARD_FILE=./flags.json python examples/vote_demo.py
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

from votebook.config import Settings
from votebook.server import run_app


if __name__ == "__main__":
    settings = Settings.from_env()
    print("=" * 60)
    print("  VOTEBOOK DEMO")
    print("=" * 60)
    print()
    print(f"  Open in several browsers: http://{settings.host}:{settings.port}")
    print(f"  Vote policy: {settings.vote_policy.value}")
    print()
    print("  Press Ctrl+C to stop.")
    print("=" * 60)
    run_app(settings)
