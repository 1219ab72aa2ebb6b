"""Transcription providers that buffer frames in front of a Whisper engine."""
