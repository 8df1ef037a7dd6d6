"""Configuration management for Better Category Manager."""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent
load_dotenv(_project_root / ".env")

DEFAULT_EXPANSION_STATE_FILE = _project_root / ".cache" / "expanded_terms.json"
DEFAULT_DESCRIPTION_PROMPT = "Write a short, friendly description for the category [TERM_NAME]."

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DragGeometry:
    """Pixel thresholds used while a term row is being dragged."""

    proximity_tolerance: float = 50.0
    nesting_threshold: float = 100.0
    start_delay_ms: int = 150
    nest_indent: int = 20


@dataclass
class Config:
    """Application configuration."""

    # WordPress admin-ajax endpoint
    ajax_url: str
    nonce: str
    category: str

    # Optional settings with defaults
    request_timeout: float = 30.0
    proximity_tolerance: float = 50.0
    nesting_threshold: float = 100.0
    drag_start_delay_ms: int = 150
    nest_indent: int = 20
    search_debounce_ms: int = 300
    notification_duration_ms: int = 3000
    show_post_counts: bool = True
    expansion_state_file: Path | None = None
    description_prompt: str = DEFAULT_DESCRIPTION_PROMPT
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        state_file = os.getenv("BCM_EXPANSION_STATE_FILE", str(DEFAULT_EXPANSION_STATE_FILE))

        return cls(
            ajax_url=os.getenv("BCM_AJAX_URL", "http://localhost/wp-admin/admin-ajax.php"),
            nonce=os.getenv("BCM_NONCE", ""),
            category=os.getenv("BCM_CATEGORY", "category"),
            request_timeout=float(os.getenv("BCM_REQUEST_TIMEOUT", "30")),
            proximity_tolerance=float(os.getenv("BCM_PROXIMITY_TOLERANCE", "50")),
            nesting_threshold=float(os.getenv("BCM_NESTING_THRESHOLD", "100")),
            drag_start_delay_ms=int(os.getenv("BCM_DRAG_START_DELAY_MS", "150")),
            nest_indent=int(os.getenv("BCM_NEST_INDENT", "20")),
            search_debounce_ms=int(os.getenv("BCM_SEARCH_DEBOUNCE_MS", "300")),
            notification_duration_ms=int(os.getenv("BCM_NOTIFICATION_DURATION_MS", "3000")),
            show_post_counts=_env_bool("BCM_SHOW_POST_COUNTS", "true"),
            expansion_state_file=Path(state_file) if state_file else None,
            description_prompt=os.getenv("BCM_DESCRIPTION_PROMPT", DEFAULT_DESCRIPTION_PROMPT),
            debug=_env_bool("BCM_DEBUG", "false"),
        )

    @property
    def drag_geometry(self) -> DragGeometry:
        """Drag thresholds as a single immutable value."""
        return DragGeometry(
            proximity_tolerance=self.proximity_tolerance,
            nesting_threshold=self.nesting_threshold,
            start_delay_ms=self.drag_start_delay_ms,
            nest_indent=self.nest_indent,
        )


def setup_logging(debug: bool = False) -> None:
    """Configure root logging for the CLI and API entry points."""
    logging.basicConfig(
        format=LOG_FORMAT,
        level=logging.DEBUG if debug else logging.INFO,
        stream=sys.stdout,
    )


# Global config instance
config = Config.from_env()
