"""Progress scaling helpers for staged processing."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProgressSlice:
    """A reserved span of the overall 0-100 progress scale.

    Example usage:
        synthesis = ProgressSlice(10, 30)
        synthesis.scale(0.5)  # -> 20.0
    """

    start: float
    end: float

    def __post_init__(self):
        if not 0 <= self.start <= self.end <= 100:
            raise ValueError(f"Invalid progress slice: {self.start}-{self.end}")

    def scale(self, fraction: float) -> float:
        """Map a stage-local fraction in [0, 1] onto this slice."""
        fraction = max(0.0, min(fraction, 1.0))
        return self.start + fraction * (self.end - self.start)

    def scale_ratio(self, done: int, total: int) -> float:
        """Map ``done`` out of ``total`` onto this slice.

        An unknown (zero) total reports the start of the slice.
        """
        if total <= 0:
            return self.start
        return self.scale(done / total)


def format_duration(seconds: Optional[float]) -> str:
    """Format a duration in human-readable form.

    Returns:
        Formatted string (e.g., "2m 30s", "45s", "1h 5m")
    """
    if seconds is None:
        return "calculating..."

    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        minutes = int(seconds / 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds / 3600)
        minutes = int((seconds % 3600) / 60)
        return f"{hours}h {minutes}m"
