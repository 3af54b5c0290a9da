from __future__ import annotations

from typing import Iterable, Sequence

from chat_inspector.models import Chunk, Prompt
from chat_inspector.segmentation import as_chunk_sequence, reply_end, user_run_end


def _contains(text: str | None, needle: str) -> bool:
    return bool(text) and needle in text.lower()


def _reply_matches(chunks: Sequence[Chunk], prompt: Prompt, needle: str) -> bool:
    start = prompt.original_index
    if start < 0 or start >= len(chunks):
        return False
    reply_start = user_run_end(chunks, start)
    for chunk in chunks[reply_start:reply_end(chunks, reply_start)]:
        if chunk.role == "model" and _contains(chunk.text, needle):
            return True
    return False


def search(
    prompts: Sequence[Prompt],
    stream: Iterable[Chunk] | None,
    query: str,
    deep: bool = False,
) -> set[int]:
    """Return the positions of prompts matching *query* (case-insensitive substring).

    In deep mode a prompt also matches when any model chunk of its reply
    contains the query; the reply ends at the next user chunk.
    """
    if not isinstance(query, str):
        return set()
    needle = query.lower()
    chunks = as_chunk_sequence(stream) if deep else ()

    matches: set[int] = set()
    for position, prompt in enumerate(prompts):
        if needle in prompt.text.lower():
            matches.add(position)
        elif deep and _reply_matches(chunks, prompt, needle):
            matches.add(position)
    return matches
