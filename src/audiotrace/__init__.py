"""
audiotrace: Non-intrusive observation of multimedia capture and encoding pipelines.

Reconstructs the wiring of audio-processing components, the active encoding
technology, and recording-session boundaries from intercepted host calls.
"""

__version__ = "0.1.0"
