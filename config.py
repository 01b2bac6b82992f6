"""
Configuration and run-telemetry module for FloraMatch.

This module provides:
- Environment validation (API keys)
- Settings loaded once from the environment / .env file
- Structured logging setup (JSONL + standard logging)
- Timing utilities

All settings are frozen after import; change them through the environment.
"""

import os
import sys
import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
import time

from dotenv import load_dotenv

# Load environment variables at module import
load_dotenv()


# =============================================================================
# FROZEN SETTINGS
# =============================================================================

@dataclass(frozen=True)
class IdentifyConfig:
    """
    Frozen configuration for identification runs.
    Values come from IDENTIFY_* environment variables, falling back to defaults.
    """
    # LLM Settings
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.0
    llm_image_detail: str = "high"
    llm_max_tokens: int = 400

    # Geolocation
    geolocation_timeout_ms: int = 3000
    geolocation_url: str = "https://ipapi.co/json/"

    # Camera
    camera_index: int = 0

    # Live elapsed-time display granularity
    tick_ms: int = 10

    # Local files
    data_dir: str = "data"
    log_dir: str = "logs"

    @classmethod
    def from_env(cls) -> "IdentifyConfig":
        """Build config from the environment."""
        defaults = cls()
        return cls(
            llm_model=os.getenv("IDENTIFY_LLM_MODEL", defaults.llm_model),
            llm_image_detail=os.getenv("IDENTIFY_IMAGE_DETAIL", defaults.llm_image_detail),
            geolocation_timeout_ms=int(
                os.getenv("IDENTIFY_GEOLOCATION_TIMEOUT_MS", defaults.geolocation_timeout_ms)
            ),
            geolocation_url=os.getenv("IDENTIFY_GEOLOCATION_URL", defaults.geolocation_url),
            camera_index=int(os.getenv("IDENTIFY_CAMERA_INDEX", defaults.camera_index)),
            data_dir=os.getenv("IDENTIFY_DATA_DIR", defaults.data_dir),
            log_dir=os.getenv("IDENTIFY_LOG_DIR", defaults.log_dir),
        )

    @property
    def history_file(self) -> Path:
        return Path(self.data_dir) / "history.json"

    @property
    def profiles_file(self) -> Path:
        return Path(self.data_dir) / "profiles.json"


# Global config instance
CONFIG = IdentifyConfig.from_env()


# =============================================================================
# ENVIRONMENT VALIDATION
# =============================================================================

def validate_environment() -> Dict[str, Any]:
    """
    Validate required environment variables.

    Returns:
        Dict with validation results and any errors
    """
    results = {
        "valid": True,
        "errors": [],
        "warnings": [],
        "config": {}
    }

    # Check OpenAI API key
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        results["valid"] = False
        results["errors"].append(
            "OPENAI_API_KEY not found. Set it in .env file or environment."
        )
    elif not api_key.startswith(("sk-", "sk-proj-")):
        results["warnings"].append(
            "OPENAI_API_KEY doesn't start with expected prefix (sk- or sk-proj-)"
        )

    if not CONFIG.geolocation_url:
        results["warnings"].append(
            "IDENTIFY_GEOLOCATION_URL is empty. Records will have no coordinates."
        )

    # Record config for logging
    results["config"] = {
        "llm_model": CONFIG.llm_model,
        "llm_temperature": CONFIG.llm_temperature,
        "llm_image_detail": CONFIG.llm_image_detail,
        "geolocation_timeout_ms": CONFIG.geolocation_timeout_ms,
        "data_dir": CONFIG.data_dir,
        "timestamp": datetime.now().isoformat(),
        "python_version": sys.version,
    }

    return results


# =============================================================================
# STRUCTURED LOGGING
# =============================================================================

@dataclass
class PipelineLog:
    """Structured log entry for pipeline execution."""
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    pipeline: str = ""
    image: str = ""
    step: str = ""
    duration_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class RunLogger:
    """
    Structured logger for identification runs.
    Every classification call and every item outcome lands in a JSONL file.
    """

    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = Path(log_dir) if log_dir else Path(CONFIG.log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.session_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.logs: list[PipelineLog] = []

        self.log_file = self.log_dir / f"identify_{self.session_id}.jsonl"

        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s | %(levelname)s | %(message)s",
            handlers=[
                logging.FileHandler(self.log_dir / f"identify_{self.session_id}.log"),
                logging.StreamHandler()
            ]
        )
        self.logger = logging.getLogger(__name__)

    def log(self, entry: PipelineLog):
        """Add a log entry."""
        self.logs.append(entry)

        with open(self.log_file, "a") as f:
            f.write(json.dumps({
                "timestamp": entry.timestamp,
                "pipeline": entry.pipeline,
                "image": entry.image,
                "step": entry.step,
                "duration_ms": entry.duration_ms,
                "details": entry.details,
                "error": entry.error
            }) + "\n")

        if entry.error:
            self.logger.error(f"[{entry.pipeline}] {entry.step}: {entry.error}")
        else:
            self.logger.info(
                f"[{entry.pipeline}] {entry.step} ({entry.duration_ms:.2f}ms)"
            )

    def log_llm_call(
        self,
        image: str,
        profile_count: int,
        raw_response: str,
        parsed_result: Any,
        duration_ms: float,
        error: Optional[str] = None
    ):
        """Log a classification call."""
        self.log(PipelineLog(
            pipeline="classify",
            image=image,
            step="llm_call",
            duration_ms=duration_ms,
            details={
                "profile_count": profile_count,
                "raw_response": raw_response[:500] if raw_response else None,
                "parsed_result": parsed_result
            },
            error=error
        ))

    def log_item(
        self,
        image: str,
        index: int,
        total: int,
        duration_ms: float,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ):
        """Log the outcome of one batch item."""
        self.log(PipelineLog(
            pipeline="identify",
            image=image,
            step=f"item {index}/{total}",
            duration_ms=duration_ms,
            details=details or {},
            error=error
        ))

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics for the session."""
        return {
            "session_id": self.session_id,
            "total_logs": len(self.logs),
            "errors": sum(1 for log in self.logs if log.error),
            "log_file": str(self.log_file)
        }


# Global logger instance (lazy initialization)
_logger: Optional[RunLogger] = None


def get_logger() -> RunLogger:
    """Get or create the global run logger."""
    global _logger
    if _logger is None:
        _logger = RunLogger()
    return _logger


def set_logger(logger: Optional[RunLogger]) -> None:
    """Replace the global run logger (None resets to lazy creation)."""
    global _logger
    _logger = logger


# =============================================================================
# TIMING UTILITIES
# =============================================================================

class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "operation"):
        self.name = name
        self.start_time: float = 0
        self.end_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()
        self.duration_ms = (self.end_time - self.start_time) * 1000

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since start; live while the timer is still running."""
        end = self.end_time or time.perf_counter()
        return max(0.0, end - self.start_time)


# =============================================================================
# INITIALIZATION CHECK
# =============================================================================

def init_app() -> Dict[str, Any]:
    """
    Initialize the application environment.
    Call this before running any identification.

    Returns:
        Dict with initialization status and config
    """
    env_result = validate_environment()

    if not env_result["valid"]:
        raise RuntimeError(
            "Environment validation failed:\n" +
            "\n".join(f"  - {e}" for e in env_result["errors"])
        )

    logger = get_logger()
    logger.logger.info(f"Config: {env_result['config']}")

    return {
        "status": "initialized",
        "config": env_result["config"],
        "warnings": env_result["warnings"],
        "logger": logger.get_summary()
    }
