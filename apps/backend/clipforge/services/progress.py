"""Progress and ETA math shared by inbound uploads and outbound transfers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TransferProgress:
    progress: float
    eta_ms: int


def compute_progress(bytes_transferred: int, total_bytes: int, elapsed_ms: float) -> TransferProgress:
    """
    Derive percent complete and the estimated remaining time.

    The ETA divides the remaining bytes by the average throughput observed so
    far. It is 0 whenever there is nothing to extrapolate from (no bytes moved
    yet or no elapsed time), never infinite.
    """
    if total_bytes <= 0:
        return TransferProgress(progress=0.0, eta_ms=0)

    progress = min(max(100.0 * bytes_transferred / total_bytes, 0.0), 100.0)

    eta_ms = 0
    if elapsed_ms > 0 and bytes_transferred > 0:
        rate = bytes_transferred / elapsed_ms  # bytes per ms
        remaining = max(total_bytes - bytes_transferred, 0)
        eta_ms = round(remaining / rate)

    return TransferProgress(progress=progress, eta_ms=eta_ms)
