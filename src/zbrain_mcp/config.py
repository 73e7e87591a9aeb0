"""Configuration module for the Zero Friction Brain MCP server."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from zbrain_mcp import __version__
from zbrain_mcp.models.schema import IdScheme

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the logs
_USER_ENV = Path.home() / ".zbrain" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Bounds for the merge threshold (relevance at which a merge is proposed)
MIN_MERGE_THRESHOLD = 0.5
MAX_MERGE_THRESHOLD = 1.0


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class BrainConfig(BaseModel):
    """Configuration for the Zero Friction Brain server."""

    # Root of the Markdown vault; every document path is relative to it
    vault_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("ZBRAIN_VAULT_DIR", "vault"))
    )
    # Vault folder layout (project-centered)
    inbox_folder: str = Field(
        default_factory=lambda: os.getenv("ZBRAIN_INBOX_FOLDER", "00 Inbox")
    )
    projects_folder: str = Field(
        default_factory=lambda: os.getenv("ZBRAIN_PROJECTS_FOLDER", "01 Projects")
    )
    library_folder: str = Field(
        default_factory=lambda: os.getenv("ZBRAIN_LIBRARY_FOLDER", "02 Library")
    )
    archives_folder: str = Field(
        default_factory=lambda: os.getenv("ZBRAIN_ARCHIVES_FOLDER", "03 Archives")
    )
    zettel_folder: str = Field(
        default_factory=lambda: os.getenv("ZBRAIN_ZETTEL_FOLDER", "10 Zettelkasten")
    )
    # Classifier (Gemini) configuration
    gemini_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("ZBRAIN_GEMINI_API_KEY") or None
    )
    gemini_model: str = Field(
        default_factory=lambda: os.getenv("ZBRAIN_GEMINI_MODEL", "gemini-2.0-flash")
    )
    # Minimum spacing between classifier calls (seconds)
    classifier_min_delay: float = Field(
        default_factory=lambda: float(os.getenv("ZBRAIN_CLASSIFIER_MIN_DELAY", "1.0"))
    )
    classifier_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("ZBRAIN_CLASSIFIER_MAX_RETRIES", "3"))
    )
    classifier_initial_backoff: float = Field(
        default_factory=lambda: float(
            os.getenv("ZBRAIN_CLASSIFIER_INITIAL_BACKOFF", "2.0")
        )
    )
    # Content longer than this is truncated before it is sent to the classifier
    max_content_chars: int = Field(
        default_factory=lambda: int(os.getenv("ZBRAIN_MAX_CONTENT_CHARS", "500000"))
    )
    # Zettelkasten configuration
    zk_id_type: IdScheme = Field(
        default_factory=lambda: IdScheme(
            os.getenv("ZBRAIN_ZK_ID_TYPE", IdScheme.DATE_SEQUENCE.value)
        )
    )
    zk_merge_threshold: float = Field(
        default_factory=lambda: float(os.getenv("ZBRAIN_ZK_MERGE_THRESHOLD", "0.8"))
    )
    # Inbox automation
    trigger_tag: str = Field(
        default_factory=lambda: os.getenv("ZBRAIN_TRIGGER_TAG", "#done")
    )
    auto_watch: bool = Field(
        default_factory=lambda: _env_bool("ZBRAIN_AUTO_WATCH", "false")
    )
    # Quiescence window for collapsing change events (seconds)
    debounce_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ZBRAIN_DEBOUNCE_SECONDS", "3.0"))
    )
    # Pause between items of a bulk operation (seconds)
    bulk_pacing_delay: float = Field(
        default_factory=lambda: float(os.getenv("ZBRAIN_BULK_PACING_DELAY", "1.0"))
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("ZBRAIN_SERVER_NAME", "zbrain-mcp"))
    server_version: str = Field(default=__version__)

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_ranges(self) -> "BrainConfig":
        """Reject values outside their documented ranges."""
        if not MIN_MERGE_THRESHOLD <= self.zk_merge_threshold <= MAX_MERGE_THRESHOLD:
            raise ValueError(
                f"zk_merge_threshold must be within "
                f"[{MIN_MERGE_THRESHOLD}, {MAX_MERGE_THRESHOLD}]"
            )
        if self.classifier_max_retries < 0:
            raise ValueError("classifier_max_retries must be >= 0")
        if self.classifier_min_delay < 0 or self.classifier_initial_backoff < 0:
            raise ValueError("classifier delays must be >= 0")
        if self.debounce_seconds < 0 or self.bulk_pacing_delay < 0:
            raise ValueError("debounce_seconds and bulk_pacing_delay must be >= 0")
        if self.max_content_chars < 1:
            raise ValueError("max_content_chars must be >= 1")
        return self

    def get_vault_path(self) -> Path:
        """Get the absolute path to the vault directory, creating it if needed."""
        vault_path = self.vault_dir.expanduser().resolve()
        vault_path.mkdir(parents=True, exist_ok=True)
        return vault_path

    def target_folder(self, target_type: str, project_name: Optional[str] = None) -> str:
        """Map a classification target to the vault folder it lives in."""
        if target_type == "project":
            if project_name:
                return f"{self.projects_folder}/{project_name}"
            return self.projects_folder
        if target_type == "archive":
            return self.archives_folder
        return self.library_folder


# Create a global config instance
config = BrainConfig()
