from __future__ import annotations

from typing import Any, Iterator, List

from .fields import TranscriptEvent


def _extract_utterances(payload: dict) -> Iterator[dict]:
    """抽取流式 ASR 返回中的句子列表"""
    body = payload.get("payload_msg") or payload
    for item in body.get("result") or []:
        if not isinstance(item, dict):
            continue
        for utt in item.get("utterances") or []:
            if isinstance(utt, dict):
                yield utt


def events_from_asr_payload(payload: Any) -> List[TranscriptEvent]:
    """Map a streaming-ASR result frame to transcript events.

    Utterances flagged ``definite``/``is_final`` become final events, everything else
    is provisional.
    """

    if not isinstance(payload, dict):
        return []
    events: List[TranscriptEvent] = []
    for utt in _extract_utterances(payload):
        text = utt.get("text") or utt.get("normalized_text") or ""
        if not text:
            continue
        definite = bool(utt.get("definite") or utt.get("is_final"))
        events.append(TranscriptEvent(text=text, is_final=definite))
    return events


__all__ = ["events_from_asr_payload"]
