from __future__ import annotations

import json

import pytest

from profix.engine.types import Selection


@pytest.fixture()
def selection() -> Selection:
    return Selection(text='int x\nprintf("%d", x)', start_line=4)


@pytest.fixture()
def warning_reply() -> str:
    return json.dumps(
        [
            {
                "relativeLine": 1,
                "severity": "Warning",
                "finding": "uninitialized",
                "original": "int x",
                "fix": "int x = 0;",
                "explanation": "avoid UB",
            }
        ]
    )
