"""Gemini-backed chart screening calls: config, REST client, response parsing."""
