"""Pure text shaping around inference: input normalisation, context encoding, output cleanup."""

import re
from collections.abc import Mapping, Sequence

from modelvault.shared.types.feedback import ConversationContext

HISTORY_SEPARATOR = " || "
TRUNCATION_MARKER = "..."
PRIORITY_CONTEXT_KEYS = (
    "currentCertificate",
    "downloadedApps",
    "signedApps",
    "certificates",
    "sources",
)

_WHITESPACE = re.compile(r"\s+")
_WORD = re.compile(r"\S+")


def preprocess_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text.lower()).strip()


def postprocess_response(text: str) -> str:
    processed = text.strip()
    if not processed:
        return processed
    processed = processed[0].upper() + processed[1:]
    if processed[-1] not in ".!?":
        processed += "."
    return processed


def truncate_to_max_tokens(text: str, max_tokens: int) -> str:
    """Keep the first `max_tokens` whitespace-delimited tokens, marking any cut."""
    tokens = list(_WORD.finditer(text))
    if len(tokens) <= max_tokens:
        return text
    if max_tokens <= 0:
        return TRUNCATION_MARKER
    return text[: tokens[max_tokens - 1].end()] + TRUNCATION_MARKER


def encode_conversation_history(history: Sequence[str], limit: int = 5) -> str:
    if limit <= 0:
        return ""
    return HISTORY_SEPARATOR.join(history[-limit:])


def encode_context_data(
    current_screen: str, data: Mapping[str, str], max_tokens: int = 500
) -> str:
    parts = [f"SCREEN:{current_screen}\n"]
    for key in PRIORITY_CONTEXT_KEYS:
        if key in data:
            parts.append(f"{key.upper()}:{data[key]}\n")
    for key, value in data.items():
        if key not in PRIORITY_CONTEXT_KEYS:
            parts.append(f"{key.upper()}:{value}\n")
    return truncate_to_max_tokens("".join(parts), max_tokens)


def encode_context(context: ConversationContext, max_tokens: int = 500) -> str:
    return encode_context_data(
        context.current_screen, context.additional_data, max_tokens
    )


def augment_with_intent(message: str, intent: str) -> str:
    return f"INTENT:{intent} MESSAGE:{message}"
