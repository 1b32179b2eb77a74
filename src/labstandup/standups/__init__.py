"""Standup processing module -- audio storage, transcription, extraction and archive.

Provides the standup pipeline: SQLAlchemy models, repositories, the audio
store, the speech-to-text and extraction adapters, transcript retention,
StandupService (the orchestrator), and background cleanup tasks.
"""
