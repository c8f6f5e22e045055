"""
Top-level package for the Luna Discord bot.

This package hosts:
- config loading and validation
- the sqlite-backed store (key/value records, timezones, reminders)
- the reminder scheduler
- LLM relays (LunaCore SSE streaming, Ollama)
- Discord client, commands and message chunking
"""
