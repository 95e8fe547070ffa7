from __future__ import annotations

import hashlib
import os
from pathlib import Path

from profix.config import ModelConfig
from profix.errors import ModelError
from profix.prompts import PromptRequest


class ReplayClient:
    """
    Answer prompts from replies saved on disk, keyed by the prompt's digest.

    Enable with:

        [tool.profix.model]
        provider = "profix_replay_client:ReplayClient"

    Replies live in `PROFIX_REPLAY_DIR` (default `.profix-replies/`) as
    `<sha256 of the prompt>.json`.
    """

    def __init__(self, config: ModelConfig, *, directory: Path | None = None) -> None:
        self.config = config
        self.directory = directory or Path(os.environ.get("PROFIX_REPLAY_DIR", ".profix-replies"))

    @staticmethod
    def digest(request: PromptRequest) -> str:
        return hashlib.sha256(request.text.encode("utf-8")).hexdigest()

    def generate(self, request: PromptRequest) -> str:
        path = self.directory / f"{self.digest(request)}.json"
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ModelError(f"No saved reply for this prompt ({path.name}).") from exc
