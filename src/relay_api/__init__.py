"""
relay-api: Backend-for-frontend relay for a language-learning app.

The relay sits between the app and its third-party providers:
    - OpenAI chat completions for conversation analysis
    - ElevenLabs conversational agents and text-to-speech
    - Resend transactional email
    - Supabase for identity, profiles, prompts and logs

Every relayed call runs through one pipeline (authenticate, authorize,
validate, cache, call, log) so the app never holds provider secrets.

Example Usage:
    uvicorn relay_api.main:app --host 0.0.0.0 --port 8000
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
