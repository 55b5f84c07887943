"""
LLM Chess Coach package.

Components:
- game: GameSession orchestrator (turns, AI fallback, analysis/chat sequencing) and GameConfig
- session: immutable state, moves, snapshot types
- referee: rules adapter over python-chess
- providers/llm_client/agent_normalizer: AI move, analysis and chat requests over an OpenAI-compatible endpoint
- fallback_policies/moderation/move_validator/prompting: pluggable pieces used by the session
- server/play: Flask JSON API and terminal front ends
"""
# Package exports are intentionally minimal; import modules directly as needed.
