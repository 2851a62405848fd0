"""Inline file context for chat prompts.

Builds the text block the model sees for a message's attachments from text
that was already extracted (OCR, transcription, document text).
"""
import logging
from typing import Callable, Optional

from attachments.config import settings
from attachments.constants import ToolResource

logger = logging.getLogger(__name__)

TRUNCATED_NOTE = (
    "\n\n**Note**: Some document(s) were truncated due to size limits: {files}. "
    "You can answer based on the visible content. For questions about sections not shown, "
    "use the file_search tool to find specific information."
)
COMPLETE_NOTE = (
    "\n\n**IMPORTANT**: The complete document content is provided above. "
    "Answer questions directly using this text - do NOT use the file_search tool for this query."
)
PENDING_NOTE = (
    "\n\n**Note**: The file(s) are being indexed in the background for future semantic searches. "
    "For this query, use the full document text provided above."
)
EMBEDDED_NOTE = (
    "**Note**: The following file(s) are indexed and ready for search: {files}. "
    "Use the file_search tool to find relevant information from these documents."
)


def approximate_token_count(text: str) -> int:
    # ~4 characters per token for English prose
    return (len(text) + 3) // 4


def truncate_to_token_limit(
    text: str, token_limit: int, count_tokens: Callable[[str], int] = approximate_token_count,
) -> tuple[str, bool]:
    """Return (text, was_truncated) with the text cut to fit ``token_limit``."""
    total = count_tokens(text)
    if total <= token_limit:
        return text, False

    # proportional cut, then shrink until it fits
    end = max(0, int(len(text) * token_limit / total))
    while end > 0 and count_tokens(text[:end]) > token_limit:
        end = int(end * 0.9)
    return text[:end], True


def build_file_context(
    attachments: list,
    token_limit: Optional[int] = None,
    count_tokens: Callable[[str], int] = approximate_token_count,
) -> Optional[str]:
    """Format attachments' extracted text; None when there is nothing to say.

    Files routed to code execution are skipped (the sandbox reads them).
    Embedded files are only mentioned as searchable.
    """
    if not attachments:
        return None

    limit = token_limit or settings.FILE_TOKEN_LIMIT
    result = ""
    pending: list[str] = []
    embedded: list[str] = []
    truncated: list[str] = []

    for file in attachments:
        tool_resource = (file.file_metadata or {}).get("tool_resource")
        if tool_resource == ToolResource.EXECUTE_CODE.value:
            logger.debug(f"[file_context] skipping {file.filename}, routed to execute_code")
            continue

        if file.embedded:
            embedded.append(file.filename)
            continue

        if tool_resource == ToolResource.FILE_SEARCH.value:
            pending.append(file.filename)

        if file.text:
            text, was_truncated = truncate_to_token_limit(file.text, limit, count_tokens)
            if was_truncated:
                truncated.append(file.filename)
            header = "Attached document(s):\n```md" if not result else "\n\n---\n\n"
            suffix = " (truncated)" if was_truncated else ""
            result += f'{header}# "{file.filename}"{suffix}\n{text}\n'

    if result:
        result += "\n```"
        if truncated:
            result += TRUNCATED_NOTE.format(files=", ".join(truncated))
        else:
            result += COMPLETE_NOTE

    if pending and not truncated:
        result += PENDING_NOTE

    if embedded and not result:
        result = EMBEDDED_NOTE.format(files=", ".join(embedded))

    return result or None
