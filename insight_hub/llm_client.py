"""
Minimal LLM client wrapper using Google Gemini.

Rationale:
- Use google-genai SDK (supported) for Gemini access.
- Keep interface tiny: generate(prompt, schema) -> str (JSON text).
- Structured output: the response is constrained to the given schema.
- No retries / no fallback.
"""

from typing import Any, Dict, Optional

try:
    from google import genai
    from google.genai import types
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "Missing dependency for Gemini client. Install 'google-genai'. "
        "Original import error: " + str(e)
    )

from . import config


async def generate(
    prompt: str,
    schema: Dict[str, Any],
    *,
    model_name: Optional[str] = None,
    temperature: Optional[float] = None,
) -> str:
    """
    Ask Gemini for JSON matching `schema` and return the raw response text.
    """
    # Load API key lazily (after main.py loads .env)
    api_key = config.require_api_key()
    model_name = model_name or config.get_model_name()
    if temperature is None:
        temperature = config.get_temperature()

    try:
        # The async transport is closed when the block exits.
        async with genai.Client(api_key=api_key).aio as aclient:
            response = await aclient.models.generate_content(
                model=model_name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=temperature,
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )

        # Prefer the SDK's convenience property
        result = getattr(response, "text", None)
        if result:
            return result

        # Fallback: attempt to extract from candidates (SDK shape can vary across versions)
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            raise RuntimeError("Gemini returned no candidates.")

        candidate0 = candidates[0]
        content = getattr(candidate0, "content", None)
        parts = getattr(content, "parts", None) if content else None
        if parts:
            text0 = getattr(parts[0], "text", None)
            if text0:
                return text0

        raise RuntimeError("Gemini returned empty response")

    except Exception as e:
        raise RuntimeError(f"Gemini API error: {str(e)}") from e
