"""
PPG Vitals — fingertip photoplethysmography from camera frames.
Cover the camera lens and torch with a fingertip; the pipeline extracts the
PPG waveform from the green channel and estimates heart rate, an
experimental SpO2 proxy, signal quality and rhythm irregularities.
"""

__version__ = "0.1.0"
__author__ = "ppg_vitals"

from .config import PipelineConfig
from .models import NEUTRAL_SNAPSHOT, Sample, SessionRow, VitalSignsSnapshot, WaveformPoint
from .pipeline import PipelineResult, VitalSignsPipeline

__all__ = [
    "NEUTRAL_SNAPSHOT",
    "PipelineConfig",
    "PipelineResult",
    "Sample",
    "SessionRow",
    "VitalSignsPipeline",
    "VitalSignsSnapshot",
    "WaveformPoint",
]
