import asyncio
from functools import partial
from typing import Optional

import google.generativeai as genai

from app.core.errors import GenerationProviderError
from app.utils.logger import get_logger
from app.utils.metrics import generation_requests_total

logger = get_logger("services.generation")


def strip_code_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


class GeminiGenerationService:

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-1.5-flash",
        temperature: float = 0.2,
        timeout_seconds: float = 45.0,
    ):
        if not api_key:
            raise ValueError("Missing GEMINI_API_KEY for the generation provider")

        genai.configure(api_key=api_key)
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    async def generate(self, system_prompt: str, user_prompt: str, json_output: bool = True) -> str:
        """Return the model's text completion for one system/user prompt pair."""
        generation_config = {"temperature": self.temperature}
        if json_output:
            generation_config["response_mime_type"] = "application/json"

        model = genai.GenerativeModel(self.model, system_instruction=system_prompt)

        try:
            loop = asyncio.get_running_loop()
            response = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    partial(model.generate_content, user_prompt, generation_config=generation_config),
                ),
                timeout=self.timeout_seconds,
            )
            text = response.text
        except asyncio.TimeoutError as e:
            generation_requests_total.labels(status="timeout").inc()
            raise GenerationProviderError(
                f"Generation request timed out after {self.timeout_seconds}s"
            ) from e
        except Exception as e:
            generation_requests_total.labels(status="failed").inc()
            logger.error(f"Generation provider error: {e}")
            raise GenerationProviderError(f"Generation provider error: {e}") from e

        generation_requests_total.labels(status="success").inc()
        return strip_code_fences(text or "")
