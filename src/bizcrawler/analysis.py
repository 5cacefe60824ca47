import json
import logging
from typing import Any, Dict

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from .config import Settings
from .errors import AnalysisUnavailable, ConfigurationError
from .models import BusinessAnalysis, ParsedAnalysis, UnparsedAnalysis

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 15000
PARTIAL_TEXT_LENGTH = 300

SYSTEM_PROMPT = "You are an expert at analyzing business websites and extracting key information. Always return valid JSON."

ANALYSIS_PROMPT = """Analyze this business website text and extract key information.
Website text: "{text}"

Return ONLY a JSON object with these fields:
- "title": The business name/title (string)
- "businessType": The type/category of business (string)
- "observations": Key observations about their offerings, approach, or unique aspects (list of strings)
- "contactInfo": Any contact information found, as an object with optional "email", "phone" and "address" (omit if none)
- "socialMedia": Any social media links found, as an object mapping platform name to URL (omit if none)

Respond with the JSON object only. Do NOT include introductory text, closing remarks, or markdown formatting like ```json."""

# Expected JSON type per field of a parsed analysis
ANALYSIS_FIELDS = {
    "title": ("title", str),
    "businessType": ("business_type", str),
    "observations": ("observations", list),
    "contactInfo": ("contact_info", dict),
    "socialMedia": ("social_media", dict),
}


def build_llm(settings: Settings) -> BaseChatModel:
    """Chat model for the configured LLM_MODE. Provider retries are off; the crawl policy retries."""
    settings.require_credentials()
    mode = settings.llm_mode
    logger.info(f"Configured LLM Mode: {mode} (model: {settings.model_name})")

    if mode == "anthropic":
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(
            model=settings.model_name,
            api_key=settings.anthropic_api_key,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            max_retries=0,
        )
    if mode == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI
        return ChatGoogleGenerativeAI(
            model=settings.model_name,
            google_api_key=settings.google_api_key,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_tokens,
            max_retries=0,
        )
    if mode == "deepseek":
        from langchain_deepseek import ChatDeepSeek
        return ChatDeepSeek(
            model=settings.model_name,
            api_key=settings.deepseek_api_key,
            api_base=settings.deepseek_api_base,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            max_retries=0,
        )
    raise ConfigurationError(f"Invalid LLM_MODE specified: '{mode}'")


def response_text(response: Any) -> str:
    """Plain text of a chat model response; content-block lists are flattened."""
    content = getattr(response, "content", response)
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


def parse_analysis(raw: str) -> BusinessAnalysis:
    """Strict parse of the model's answer. Anything but a well-typed JSON object stays raw."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Model output is not valid JSON ({e}). Raw text snippet: {raw[:200]}...")
        return UnparsedAnalysis(raw_model_output=raw)

    if not isinstance(data, dict):
        logger.warning(f"Parsed JSON is not an object, type: {type(data).__name__}")
        return UnparsedAnalysis(raw_model_output=raw)

    fields: Dict[str, Any] = {}
    for key, (attr, expected_type) in ANALYSIS_FIELDS.items():
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, expected_type):
            logger.warning(f"Field '{key}' has type {type(value).__name__}, expected {expected_type.__name__}")
            return UnparsedAnalysis(raw_model_output=raw)
        fields[attr] = value

    observations = fields.get("observations")
    if observations is not None and not all(isinstance(item, str) for item in observations):
        logger.warning("Field 'observations' contains non-string items")
        return UnparsedAnalysis(raw_model_output=raw)

    return ParsedAnalysis(**fields)


class AnalysisClient:
    """One model call per page, resolved to a BusinessAnalysis variant."""

    def __init__(self, llm: BaseChatModel, max_content_length: int = MAX_CONTENT_LENGTH):
        self.llm = llm
        self.max_content_length = max_content_length

    def build_messages(self, text: str):
        content_to_analyze = text[:self.max_content_length]
        if len(text) > self.max_content_length:
            logger.debug(f"Truncating content for LLM analysis from {len(text)} to {self.max_content_length} chars")
        return [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=ANALYSIS_PROMPT.format(text=content_to_analyze)),
        ]

    async def analyze(self, text: str) -> BusinessAnalysis:
        messages = self.build_messages(text)
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error(f"LLM call failed: {e}")
            raise AnalysisUnavailable(str(e) or type(e).__name__, text[:PARTIAL_TEXT_LENGTH]) from e
        return parse_analysis(response_text(response))
