"""Application layer: handlers, dispatcher and background jobs."""
