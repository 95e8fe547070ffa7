from __future__ import annotations

from profix_replay_client.client import ReplayClient

__all__ = ["ReplayClient"]
