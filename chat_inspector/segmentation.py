"""Run-boundary segmentation of a chunk stream.

Prompts, turns and per-prompt exchanges are all derived from one run
iterator, so the n-th prompt and the user turn numbered n always describe
the same chunks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Sequence

from chat_inspector.classifier import classify, media_label
from chat_inspector.models import Chunk, Prompt, Role, Segmentation, Turn


class SegmentationError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Run:
    start: int
    role: Role
    is_thought: bool
    chunks: tuple[Chunk, ...]

    @property
    def stop(self) -> int:
        return self.start + len(self.chunks)


def as_chunk_sequence(stream: Iterable[Any] | None) -> Sequence[Chunk]:
    """Materialize *stream*; entries that are not chunks become empty model chunks.

    Positions are preserved, so the n-th entry of the input is always the
    n-th chunk of the result.
    """
    if stream is None or isinstance(stream, (str, bytes, dict)):
        return ()
    try:
        entries = list(stream)
    except TypeError:
        return ()
    return [
        entry if isinstance(entry, Chunk) else Chunk(index=position, role="model")
        for position, entry in enumerate(entries)
    ]


def _thought_state(chunk: Chunk) -> bool:
    return chunk.role == "model" and chunk.is_thought


def _starts_new_run(current_role: Role, current_is_thought: bool, chunk: Chunk) -> bool:
    if chunk.role != current_role:
        return True
    return current_role == "model" and chunk.is_thought != current_is_thought


def iter_runs(stream: Sequence[Chunk]) -> Iterator[Run]:
    """Yield maximal runs of same-role chunks, splitting model runs on thought state."""
    buffer: list[Chunk] = []
    start = 0
    current_role: Role = "user"
    current_is_thought = False

    for position, chunk in enumerate(stream):
        if buffer and _starts_new_run(current_role, current_is_thought, chunk):
            yield Run(start, current_role, current_is_thought, tuple(buffer))
            buffer = []
        if not buffer:
            start = position
            current_role = chunk.role
            current_is_thought = _thought_state(chunk)
        buffer.append(chunk)

    if buffer:
        yield Run(start, current_role, current_is_thought, tuple(buffer))


def user_run_end(stream: Sequence[Chunk], start: int) -> int:
    position = start
    while position < len(stream) and stream[position].role == "user":
        position += 1
    return position


def reply_end(stream: Sequence[Chunk], start: int) -> int:
    """Index of the first user chunk at or after *start*, or the stream length."""
    position = start
    while position < len(stream) and stream[position].role != "user":
        position += 1
    return position


def _build_prompt(position: int, chunks: Sequence[Chunk], original_index: int) -> Prompt:
    texts: list[str] = []
    media_types: list[str] = []
    media_count = 0

    for chunk in chunks:
        if chunk.has_text:
            texts.append(chunk.text.strip())
        chunk_class = classify(chunk)
        if chunk_class.is_media:
            media_count += 1
            label = media_label(chunk_class.kind, chunk_class.mime_type)
            if label not in media_types:
                media_types.append(label)

    return Prompt(
        index=position,
        original_index=original_index,
        text=" ".join(texts),
        has_media=media_count > 0,
        media_count=media_count,
        media_types=tuple(media_types),
    )


def _segment(stream: Sequence[Chunk]) -> Segmentation:
    prompts: list[Prompt] = []
    turns: list[Turn] = []

    for run in iter_runs(stream):
        if run.role == "user":
            user_turn_index = len(prompts)
            prompts.append(_build_prompt(user_turn_index, run.chunks, run.start))
            turns.append(Turn("user", False, run.chunks, user_turn_index))
        else:
            turns.append(Turn(run.role, run.is_thought, run.chunks))

    return Segmentation(prompts=tuple(prompts), turns=tuple(turns))


def extract_prompts(stream: Iterable[Chunk] | None) -> list[Prompt]:
    return list(_segment(as_chunk_sequence(stream)).prompts)


def segment_turns(stream: Iterable[Chunk] | None) -> list[Turn]:
    return list(_segment(as_chunk_sequence(stream)).turns)


def _verify(segmentation: Segmentation, stream: Sequence[Chunk]) -> None:
    user_turns = segmentation.user_turns
    if len(user_turns) != len(segmentation.prompts):
        raise SegmentationError(
            f"{len(segmentation.prompts)} prompts but {len(user_turns)} user turns"
        )
    for prompt, turn in zip(segmentation.prompts, user_turns):
        if turn.user_turn_index != prompt.index:
            raise SegmentationError(
                f"user turn {turn.user_turn_index} is paired with prompt {prompt.index}"
            )
        if stream[prompt.original_index] is not turn.chunks[0]:
            raise SegmentationError(
                f"prompt {prompt.index} starts at chunk {prompt.original_index}, "
                f"user turn starts elsewhere"
            )


def segment_conversation(stream: Iterable[Chunk] | None) -> Segmentation:
    """Return prompts and turns from a single pass, checked to correspond 1:1."""
    chunks = as_chunk_sequence(stream)
    segmentation = _segment(chunks)
    _verify(segmentation, chunks)
    return segmentation


def turn_chunks_for(
    stream: Iterable[Chunk] | None,
    prompt_index: int,
    prompts: Sequence[Prompt],
) -> list[Chunk]:
    chunks = as_chunk_sequence(stream)
    if not isinstance(prompt_index, int) or isinstance(prompt_index, bool):
        return []
    if prompt_index < 0 or prompt_index >= len(prompts):
        return []

    start = prompts[prompt_index].original_index
    if start < 0 or start >= len(chunks) or chunks[start].role != "user":
        return []

    user_end = user_run_end(chunks, start)
    return list(chunks[start:reply_end(chunks, user_end)])
