"""
Configuration

Values come from the environment (a local .env file is honoured).
Detection thresholds default to the fixed rule constants.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

API_PREFIX = os.getenv("API_PREFIX", "/api")
LOG_FILE_PATH = os.getenv("LOG_FILE", "./data/monitoring.jsonl")  # stored as JSONL
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Upper bound on records loaded per request; the most recent ones are kept
MAX_SNAPSHOT = int(os.getenv("MAX_SNAPSHOT", "50000"))

SUMMARY_ALERT_LIMIT = int(os.getenv("SUMMARY_ALERT_LIMIT", "5"))


@dataclass(frozen=True)
class DetectionConfig:
    """Tunable thresholds for the detector set"""
    brute_force_threshold: int = 5
    brute_force_high_threshold: int = 10
    scan_window_size: int = 15
    scan_time_window_minutes: float = 5.0
    error_rate_threshold: float = 0.10
    error_rate_high_threshold: float = 0.25
    error_rate_min_count: int = 5
    error_rate_min_sample: int = 10

    @classmethod
    def from_env(cls) -> "DetectionConfig":
        return cls(
            brute_force_threshold=int(os.getenv("BRUTE_FORCE_THRESHOLD", "5")),
            brute_force_high_threshold=int(os.getenv("BRUTE_FORCE_HIGH_THRESHOLD", "10")),
            scan_window_size=int(os.getenv("SCAN_WINDOW_SIZE", "15")),
            scan_time_window_minutes=float(os.getenv("SCAN_TIME_WINDOW_MINUTES", "5")),
            error_rate_threshold=float(os.getenv("ERROR_RATE_THRESHOLD", "0.10")),
            error_rate_high_threshold=float(os.getenv("ERROR_RATE_HIGH_THRESHOLD", "0.25")),
            error_rate_min_count=int(os.getenv("ERROR_RATE_MIN_COUNT", "5")),
            error_rate_min_sample=int(os.getenv("ERROR_RATE_MIN_SAMPLE", "10")),
        )
