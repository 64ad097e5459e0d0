"""
PressTalk Tests
===============

Unit tests for the dictation pipeline.

Test Structure:
- test_silence_detector.py / test_session.py: auto-stop detection and stop arbitration
- test_trimmer.py / test_pcm.py: edge trimming and WAV/PCM helpers
- test_upload.py / test_realtime.py / test_multipart.py: transcription transports
- test_coordinator.py / test_dictation.py: orchestration
- conftest.py: Shared test fixtures and setup

To run tests:
    pytest tests/

To run specific test file:
    pytest tests/test_upload.py
"""
