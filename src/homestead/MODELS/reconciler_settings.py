"""
Runtime settings for a reconciliation run.
"""
from typing import List
from pydantic import BaseModel, Field


class ReconcilerSettings(BaseModel):
    """
    Settings shared by the setup and update flows.
    Populated from CLI options, which also read HOMESTEAD_* variables.
    """
    catalog_path: str = "services.yml"
    env_files: List[str] = Field(default_factory=lambda: [".env"])
    data_dir: str = "./data"
    project: str = "homestead"
    include_process_env: bool = False
    max_workers: int = Field(default=4, ge=1)
    action_timeout: float = Field(default=300.0, gt=0)
    git_pull: bool = False
