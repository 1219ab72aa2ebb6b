"""faster-whisper worker process and the async client that drives it."""
