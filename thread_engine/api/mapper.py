"""
API Mapper
==========

Transforms engine value types into JSON-ready DTOs.
Timestamps are ISO 8601 strings plus epoch milliseconds.
"""
from typing import Any, Dict, Optional

from ..contracts.base import Timestamp
from ..contracts.errors import ThreadEngineError
from ..contracts.facts import TxReport
from ..contracts.threads import Message, TagSummary, Thread


def map_time_to_dto(ts: Optional[Timestamp]) -> Optional[Dict[str, Any]]:
    if ts is None:
        return None
    return {"iso": ts.to_iso(), "millis": ts.to_millis()}


def map_message_to_dto(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "thread_id": message.thread_id,
        "user_id": message.user_id,
        "created_at": map_time_to_dto(message.created_at),
        "content": message.content,
    }


def map_thread_to_dto(thread: Thread) -> Dict[str, Any]:
    """Map a Thread aggregate to its DTO. Sets become sorted lists."""
    return {
        "id": thread.id,
        "group_id": thread.group_id,
        "tag_ids": sorted(thread.tag_ids),
        "mentioned_ids": sorted(thread.mentioned_ids),
        "messages": [map_message_to_dto(m) for m in thread.messages],
        "newest_message_at": map_time_to_dto(thread.newest_message_at),
        "last_open_at": map_time_to_dto(thread.last_open_at),
    }


def map_tag_summary_to_dto(summary: TagSummary) -> Dict[str, Any]:
    return {
        "id": summary.id,
        "group_id": summary.group_id,
        "name": summary.name,
        "threads_count": summary.threads_count,
        "subscribers_count": summary.subscribers_count,
    }


def map_report_to_dto(report: TxReport) -> Dict[str, Any]:
    return {
        "tx": report.tx,
        "instant": map_time_to_dto(report.instant),
        "datoms": len(report.datoms),
        "basis": report.basis_after,
        "noop": report.is_noop,
    }


def map_error_to_dto(error: ThreadEngineError) -> Dict[str, Any]:
    return {
        "code": error.error.code.name,
        "message": error.error.message,
        "context": dict(error.error.context),
    }
