"""Human-friendly workspace name generator (``adjective-noun``)."""

from __future__ import annotations

import random
from collections.abc import Iterable

ADJECTIVES = (
    "amber", "bold", "brave", "breezy", "bright", "calm", "clever", "cosmic", "crisp", "daring",
    "dusty", "eager", "fancy", "fierce", "gentle", "glad", "golden", "grand", "happy", "hidden",
    "humble", "icy", "jolly", "keen", "lively", "lucky", "mellow", "mighty", "misty", "noble",
    "polite", "proud", "quick", "quiet", "rapid", "rusty", "shiny", "silent", "silver", "sleepy",
    "smooth", "snowy", "solid", "steady", "sunny", "swift", "tidy", "vivid", "warm", "witty",
)  # fmt: skip

NOUNS = (
    "anchor", "beacon", "buoy", "canal", "cargo", "channel", "compass", "cove", "crane", "current",
    "delta", "dock", "ferry", "fjord", "galley", "harbor", "haven", "hull", "inlet", "island",
    "jetty", "keel", "lagoon", "lantern", "lighthouse", "mast", "marina", "mooring", "oar", "pier",
    "pilot", "quay", "reef", "rudder", "sail", "schooner", "shoal", "skiff", "sound", "strait",
    "tide", "tugboat", "wake", "wharf", "yacht", "barge", "bay", "cape", "coast", "lock",
)  # fmt: skip

_MAX_TRIES = 100


def generate(existing: Iterable[str] = (), rng: random.Random | None = None) -> str:
    """Return an ``adjective-noun`` name not present in *existing*.

    Falls back to ``adjective-noun-N`` after repeated collisions.
    """
    rng = rng or random.Random()  # noqa: S311
    taken = set(existing)
    for _ in range(_MAX_TRIES):
        name = f"{rng.choice(ADJECTIVES)}-{rng.choice(NOUNS)}"
        if name not in taken:
            return name
    while True:
        name = f"{rng.choice(ADJECTIVES)}-{rng.choice(NOUNS)}-{rng.randrange(100)}"
        if name not in taken:
            return name
