"""
Unit test layer

    tests/unit/membership/   money, proration, retention rules, state machines
                             and workflows over the in-memory repository

Run with:
    pytest tests/unit -v
"""
import os

# Unit tests never construct the real factory; keep config loading inert
os.environ.setdefault("MEMBERSHIP_ENV_FILE", os.devnull)
