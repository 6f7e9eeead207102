from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional

from .artifacts import ArtifactStore
from .config import ShipConfig
from .secret_store import Secrets
from .ui.console import Console, get_console


@dataclass
class RunServices:
    """Shared resources of one pipeline run, handed to every job."""
    config: ShipConfig
    artifacts: ArtifactStore
    secrets: Secrets
    run_id: str
    console: Console = field(default_factory=get_console)

    @classmethod
    def create(
        cls,
        config: Optional[ShipConfig] = None,
        *,
        secrets: Optional[Secrets] = None,
        run_id: Optional[str] = None,
        console: Optional[Console] = None,
    ) -> "RunServices":
        config = config or ShipConfig.from_env()
        run_id = run_id or uuid.uuid4().hex[:12]
        return cls(
            config=config,
            artifacts=ArtifactStore(
                config.artifact_root,
                run_id=run_id,
                retention_days=config.artifact_retention_days,
            ),
            secrets=secrets if secrets is not None else Secrets.from_env(),
            run_id=run_id,
            console=console or get_console(),
        )
