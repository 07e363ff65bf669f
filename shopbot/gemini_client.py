from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import google.generativeai as genai

try:  # Prefer typed enums when available
    from google.generativeai import types as genai_types

    DEFAULT_SAFETY_SETTINGS = [
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
    ]
except Exception:  # pragma: no cover - fallback for older SDKs
    DEFAULT_SAFETY_SETTINGS = [
        {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
        {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
        {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
    ]

from .config import Settings
from .history import MessageRecord
from .prompt_loader import load_prompt

SYSTEM_INSTRUCTION_FILE = "system_instruction.md"


class GeminiBackend:
    """Generative backend over the Gemini SDK: one cached model, fixed generation config."""

    def __init__(self, settings: Settings, system_instruction: Optional[str] = None) -> None:
        """Purpose: Configure the Gemini SDK and build the salesperson model.
        Inputs/Outputs: Inputs are Settings and an optional instruction override; no return.
        Side Effects / State: Configures the SDK API key globally and caches the model.
        Dependencies: google.generativeai, load_prompt for prompts/system_instruction.md.
        Failure Modes: Raises ValueError if the API key or model name is missing.
        If Removed: The default chat path has no backend and the app cannot answer.
        Testing Notes: Missing key raises ValueError; tests inject a fake backend instead.
        """
        # Validate credentials, then build the model once with its system instruction.
        self._settings = settings
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        model_name = _normalize_model_name(settings.gemini_model)
        if not model_name:
            raise ValueError("Gemini model name is required")
        genai.configure(api_key=settings.gemini_api_key)
        if system_instruction is None:
            system_instruction = load_prompt(settings.prompts_dir / SYSTEM_INSTRUCTION_FILE)
        self._system_instruction = system_instruction.strip()
        self._model_name = model_name
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._generation_config = {
            "temperature": settings.temperature,
            "top_k": settings.top_k,
            "top_p": settings.top_p,
            "max_output_tokens": settings.max_output_tokens,
        }

    def _model(self) -> genai.GenerativeModel:
        model = self._models.get(self._model_name)
        if model is None:
            try:
                model = genai.GenerativeModel(
                    self._model_name,
                    system_instruction=self._system_instruction or None,
                )
            except TypeError:
                model = genai.GenerativeModel(self._model_name)
            self._models[self._model_name] = model
        return model

    def generate(self, prompt: str, history: Sequence[MessageRecord]) -> str:
        """Purpose: Produce a reply for the prompt given recent conversation history.
        Inputs/Outputs: Inputs are the prompt and history records (oldest first); returns text.
        Side Effects / State: Network call to the Gemini API.
        Dependencies: build_conversation_prompt, DEFAULT_SAFETY_SETTINGS.
        Failure Modes: SDK exceptions propagate; ThrottledBackend classifies them.
        If Removed: No generated answers for free-form questions.
        Testing Notes: Covered through a fake model; never call the live API in tests.
        """
        # History is rendered into the single prompt as Customer/Assistant lines.
        contents = build_conversation_prompt(prompt, history)
        response = self._model().generate_content(
            contents,
            generation_config=self._generation_config,
            safety_settings=DEFAULT_SAFETY_SETTINGS,
        )
        text: Optional[str] = getattr(response, "text", None)
        return (text or "").strip()


def build_conversation_prompt(prompt: str, history: Sequence[MessageRecord]) -> str:
    lines: List[str] = []
    for record in history:
        if record.text:
            lines.append(f"Customer: {record.text}")
        if record.response:
            lines.append(f"Assistant: {record.response}")
    if not lines:
        return prompt
    return "Conversation so far:\n" + "\n".join(lines) + "\n\n" + prompt


def _normalize_model_name(name: Optional[str]) -> str:
    """Purpose: Normalize model names by stripping prefix and whitespace.
    Inputs/Outputs: Input is a model name string; output is normalized name.
    Side Effects / State: None.
    Dependencies: None; used by GeminiBackend.
    Failure Modes: Returns empty string for falsy input.
    If Removed: "models/..." names from the console would be rejected by the SDK.
    Testing Notes: Ensure "models/foo" becomes "foo" and whitespace is trimmed.
    """
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
