from __future__ import annotations

import importlib.util

# Interview models validate addresses with pydantic's email extras.
# Skip collecting the interview suites when email-validator is not installed.
if importlib.util.find_spec("email_validator") is None:
    collect_ignore_glob = [
        "services/interview/tests/*",
        "tests/bdd/test_interview_bdd.py",
        "tests/test_smoke_harness.py",
    ]
