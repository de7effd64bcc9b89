"""Preprocessing utilities: filtering and window statistics for PPG signals."""

from __future__ import annotations

import numpy as np
from scipy.signal import butter, savgol_filter

from src.ppg_system.exceptions import InsufficientDataError


def design_bandpass(
    fs: float,
    low: float = 0.5,
    high: float = 4.0,
    order: int = 2,
) -> np.ndarray:
    """Design a Butterworth bandpass filter in second-order sections.

    Args:
        fs: Sampling frequency in Hz.
        low: Low cutoff frequency in Hz.
        high: High cutoff frequency in Hz. Clipped just below Nyquist.
        order: Filter order.

    Returns:
        SOS coefficient array for ``scipy.signal.sosfilt``.
    """
    nyq = fs / 2.0
    high = min(high, nyq * 0.95)
    low = min(max(low, 0.01), high * 0.9)
    return butter(order, [low / nyq, high / nyq], btype="bandpass", output="sos")


def smooth(signal: np.ndarray, window: int = 7, polyorder: int = 2) -> np.ndarray:
    """Savitzky-Golay smoothing; windows too short to fit are returned as-is."""
    signal = np.asarray(signal, dtype=np.float64)
    if window % 2 == 0:
        window += 1
    if len(signal) < window or window <= polyorder:
        return signal.copy()
    return savgol_filter(signal, window, polyorder)


def rescale_span(signal: np.ndarray, span: float) -> np.ndarray:
    """Shift to zero minimum and scale to a fixed peak-to-peak span.

    Constant signals map to all zeros.
    """
    signal = np.asarray(signal, dtype=np.float64)
    rng = float(np.ptp(signal)) if len(signal) else 0.0
    if rng < 1e-12:
        return np.zeros_like(signal)
    return (signal - signal.min()) * (span / rng)


def coefficient_of_variation(values: np.ndarray) -> float:
    """Standard deviation over mean (population form).

    Raises:
        InsufficientDataError: fewer than two values.
    """
    values = np.asarray(values, dtype=np.float64)
    if len(values) < 2:
        raise InsufficientDataError(2, len(values), "values")
    mean = float(values.mean())
    if abs(mean) < 1e-12:
        return 0.0
    return float(values.std() / abs(mean))


def reject_outliers_iqr(values: np.ndarray, k: float = 1.5) -> np.ndarray:
    """Drop values outside ``[Q1 - k*IQR, Q3 + k*IQR]``."""
    values = np.asarray(values, dtype=np.float64)
    if len(values) < 4:
        return values
    q1, q3 = np.percentile(values, [25, 75])
    iqr = q3 - q1
    mask = (values >= q1 - k * iqr) & (values <= q3 + k * iqr)
    return values[mask]


def zero_crossings(signal: np.ndarray, tol: float = 1e-9) -> int:
    """Count sign changes of the mean-removed signal.

    Excursions smaller than ``tol`` count as zero, so rounding noise on a
    flat signal does not register as crossings.
    """
    signal = np.asarray(signal, dtype=np.float64)
    if len(signal) < 2:
        return 0
    centered = signal - signal.mean()
    centered[np.abs(centered) < tol] = 0.0
    signs = np.sign(centered)
    # treat exact zeros as positive so flat stretches do not count
    signs[signs == 0] = 1
    return int(np.count_nonzero(np.diff(signs)))


def zero_crossing_rate(signal: np.ndarray, fs: float) -> float:
    """Mean-crossings per second."""
    if len(signal) < 2:
        return 0.0
    duration = len(signal) / fs
    return zero_crossings(signal) / duration
