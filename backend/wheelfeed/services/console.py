"""
Timestamped console output for import phases.
"""

from datetime import datetime


def timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def log(message: str) -> None:
    """Print one phase line as [HH:MM:SS] message."""
    print(f"[{timestamp()}] {message}", flush=True)
