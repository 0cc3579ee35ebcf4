"""Agent/model rotation driven by failures and rate limits.

State lives in one JSON document per project (``rotation-state.json``):
rotation position, per-agent model position, rate-limit cooldowns, per-story
attempt history and best-effort usage counters.
"""
