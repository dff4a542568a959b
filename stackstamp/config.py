"""stackstamp engine settings.

Centralised, typed settings for one engine invocation.  These are *engine*
knobs (where the template corpus lives, how many workers to use, where the
per-project state files go) and are distinct from the per-project
``ConfigContext`` that the Configuration Resolver builds at scaffold time.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "scaffolder" / "templates"


class EngineSettings(BaseModel):
    """Settings threaded through every stage of a scaffold or generate run.

    Instances are created once by the CLI entry point (usually through
    :meth:`from_env`) and passed explicitly to the pipeline; nothing in the
    engine reads ambient global state.
    """

    template_dir: Path = Field(default=DEFAULT_TEMPLATE_DIR)
    max_workers: int = Field(
        default=8, ge=1, description="Upper bound on concurrent file reads/writes"
    )
    config_filename: str = Field(default="stackstamp.json")
    record_dir: str = Field(default=".stackstamp")
    record_filename: str = Field(default="generation-record.json")
    verbose: bool = Field(default=False)

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    @property
    def app_template_dir(self) -> Path:
        """Root of the full-application scaffold corpus."""
        return self.template_dir / "app"

    @property
    def generators_dir(self) -> Path:
        """Directory holding one template bundle per generator."""
        return self.template_dir / "generators"

    @property
    def registry_path(self) -> Path:
        """The YAML file declaring the generator table."""
        return self.template_dir / "generators.yaml"

    def config_path(self, project_root: Path) -> Path:
        """Path to the persisted project configuration."""
        return Path(project_root) / self.config_filename

    def record_path(self, project_root: Path) -> Path:
        """Path to the project's GenerationRecord ledger."""
        return Path(project_root) / self.record_dir / self.record_filename

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, **overrides: Any) -> "EngineSettings":
        """Build settings from environment variables, then apply *overrides*.

        Recognised variables (all optional):
            STACKSTAMP_TEMPLATE_DIR, STACKSTAMP_MAX_WORKERS, STACKSTAMP_VERBOSE.

        Overrides whose value is ``None`` are ignored so CLI flags that were
        not given do not clobber the environment.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("STACKSTAMP_TEMPLATE_DIR"):
            kwargs["template_dir"] = Path(os.environ["STACKSTAMP_TEMPLATE_DIR"])
        if os.environ.get("STACKSTAMP_MAX_WORKERS"):
            kwargs["max_workers"] = int(os.environ["STACKSTAMP_MAX_WORKERS"])
        if os.environ.get("STACKSTAMP_VERBOSE"):
            kwargs["verbose"] = os.environ["STACKSTAMP_VERBOSE"].lower() in (
                "1",
                "true",
                "yes",
            )
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)
