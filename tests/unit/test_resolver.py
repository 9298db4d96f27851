"""Tests for the next-token resolver: advance, recall gate, fallback, exhaustion."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import date, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog

from docqueue.dispatch.resolver import NextTokenResolver
from docqueue.errors import NoActiveSessionError
from docqueue.models import DoctorStatus, Token, TokenStatus
from docqueue.presence import InMemoryPresence
from docqueue.service import QueueService
from docqueue.storage.unit_of_work import InMemoryStorage


def _serve(service: QueueService, token: Token) -> None:
    service.start_consultation(token.id)
    service.complete_consultation(token.id, "ok")


class TestNormalAdvance:
    def test_calls_tokens_in_order_then_exhausts(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        book(range(1, 6))

        results = [service.call_next("DOC-1") for _ in range(5)]

        assert [r.token_number for r in results] == [1, 2, 3, 4, 5]
        assert all(r.is_recall is False for r in results)
        assert results[0].message == "Calling Token #1"

        last = service.call_next("DOC-1")
        assert last.exhausted
        assert last.token is None
        assert last.message == "No more appointments for today"

    def test_skips_non_confirmed_tokens(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        book([1, 3])
        book([2], status=TokenStatus.cancelled)

        assert service.call_next("DOC-1").token_number == 1
        assert service.call_next("DOC-1").token_number == 3

    def test_cursor_persists_on_session(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
        monday: date,
    ) -> None:
        book(range(1, 4))
        service.call_next("DOC-1")
        service.call_next("DOC-1")

        session = storage.sessions.get_session("SES-MON")
        assert session.current_token == 2
        assert session.cursor_day == monday

    def test_normal_advance_is_monotonic(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book(range(1, 9))
        seen: list[int] = []
        for _ in range(8):
            result = service.call_next("DOC-1")
            seen.append(result.token_number)
            _serve(service, tokens[result.token_number])
        assert seen == sorted(seen)

    def test_no_active_session_raises(
        self,
        service: QueueService,
        storage: InMemoryStorage,
    ) -> None:
        with pytest.raises(NoActiveSessionError):
            service.call_next("DOC-UNKNOWN")

    def test_inactive_session_is_ignored(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        session = storage.sessions.get_session("SES-MON")
        storage.sessions.add_session(replace(session, is_active=False))
        book([1])
        with pytest.raises(NoActiveSessionError):
            service.call_next("DOC-1")


class TestRecallGate:
    def test_recalls_missed_token_after_interval(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book(range(1, 6))

        assert service.call_next("DOC-1").token_number == 1
        _serve(service, tokens[1])

        assert service.call_next("DOC-1").token_number == 2
        service.mark_no_show(tokens[2].id, "not in waiting room")

        # completed=1 → gate still closed
        assert service.call_next("DOC-1").token_number == 3
        _serve(service, tokens[3])

        # completed=2, mark=0, interval=2 → recall before advancing
        recall = service.call_next("DOC-1")
        assert recall.token_number == 2
        assert recall.is_recall is True
        assert recall.message == "Recalling Token #2"
        assert recall.missed_tokens_count == 1
        assert recall.token.recall_count == 1
        assert recall.token.is_recalled

        # gate reset; normal advance continues past the completed token 3
        nxt = service.call_next("DOC-1")
        assert nxt.token_number == 4
        assert nxt.is_recall is False

    def test_recall_resets_mark_to_completed_count(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book(range(1, 5))
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        service.call_next("DOC-1")
        _serve(service, tokens[2])
        service.call_next("DOC-1")
        _serve(service, tokens[3])

        result = service.call_next("DOC-1")
        assert result.is_recall

        session = storage.sessions.get_session("SES-MON")
        assert session.last_recall_mark == 2
        assert session.current_token == 1

    def test_earliest_missed_token_first(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book(range(1, 7))
        for n in (1, 2):
            service.call_next("DOC-1")
            service.mark_no_show(tokens[n].id)
        for n in (3, 4):
            service.call_next("DOC-1")
            _serve(service, tokens[n])

        result = service.call_next("DOC-1")
        assert result.token_number == 1
        assert result.missed_tokens_count == 2

    def test_only_tokens_behind_cursor_are_recalled(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book(range(1, 6))
        for n in (1, 2):
            service.call_next("DOC-1")
            _serve(service, tokens[n])
        # Token 4 flagged before it was ever called
        service.mark_no_show(tokens[4].id)

        result = service.call_next("DOC-1")
        assert result.token_number == 3
        assert result.is_recall is False

    def test_disabled_recall_never_gates(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        service.set_recall_policy("SES-MON", recall_enabled=False)
        tokens = book(range(1, 5))
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        for n in (2, 3):
            service.call_next("DOC-1")
            _serve(service, tokens[n])

        result = service.call_next("DOC-1")
        assert result.token_number == 4
        assert result.is_recall is False

    def test_missing_interval_defaults_to_five(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        session = storage.sessions.get_session("SES-MON")
        storage.sessions.add_session(replace(session, recall_interval=None))
        tokens = book(range(1, 9))

        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        for n in range(2, 6):
            service.call_next("DOC-1")
            _serve(service, tokens[n])
        # 4 completions: no recall yet
        assert service.call_next("DOC-1").token_number == 6
        _serve(service, tokens[6])
        # 5 completions: recall
        assert service.call_next("DOC-1").token_number == 1

    def test_started_token_is_not_a_candidate(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book(range(1, 5))
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        service.start_consultation(tokens[1].id)  # patient turned up late
        for n in (2, 3):
            service.call_next("DOC-1")
            _serve(service, tokens[n])

        result = service.call_next("DOC-1")
        assert result.token_number == 4
        assert result.is_recall is False


class TestExhaustionFallback:
    def test_fallback_recall_when_no_new_tokens(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        service.set_recall_policy("SES-MON", recall_interval=20)
        tokens = book(range(1, 6))
        for n in range(1, 6):
            service.call_next("DOC-1")
            if n == 3:
                service.mark_no_show(tokens[3].id)
            else:
                _serve(service, tokens[n])

        result = service.call_next("DOC-1")
        assert result.token_number == 3
        assert result.is_recall is True
        assert result.message == "No more appointments - Recalling missed Token #3"
        assert not result.exhausted

    def test_fallback_ignores_disabled_gate_and_does_not_move_mark(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        service.set_recall_policy("SES-MON", recall_enabled=False)
        tokens = book(range(1, 3))
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        service.call_next("DOC-1")
        _serve(service, tokens[2])

        result = service.call_next("DOC-1")
        assert result.token_number == 1
        assert storage.sessions.get_session("SES-MON").last_recall_mark == 0

    def test_repeated_fallback_until_started_then_exhausted(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book([1])
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)

        first = service.call_next("DOC-1")
        second = service.call_next("DOC-1")
        assert first.token_number == second.token_number == 1
        assert second.token.recall_count == 2

        started = service.start_consultation(tokens[1].id)
        assert started.attended_after_recall
        service.complete_consultation(tokens[1].id)

        assert service.call_next("DOC-1").exhausted

    def test_missed_token_completed_without_start_is_not_recalled(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book([1, 2])
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        service.complete_consultation(tokens[1].id, "seen at the desk")
        service.call_next("DOC-1")
        _serve(service, tokens[2])

        assert service.call_next("DOC-1").exhausted

    def test_cancelled_missed_token_is_not_recalled(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book([1])
        cancelled = book([2], status=TokenStatus.cancelled)
        storage.tokens.mark_missed(cancelled[2].id, "absent")
        service.call_next("DOC-1")
        _serve(service, tokens[1])

        result = service.call_next("DOC-1")
        assert result.exhausted
        assert result.token is None


class TestSessionDayRollover:
    def test_stale_cursor_from_last_week_is_ignored(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
        monday: date,
    ) -> None:
        session = storage.sessions.get_session("SES-MON")
        storage.sessions.add_session(
            replace(
                session,
                current_token=7,
                last_recall_mark=4,
                cursor_day=monday - timedelta(days=7),
            )
        )
        book(range(1, 4))

        result = service.call_next("DOC-1")
        assert result.token_number == 1

        fresh = storage.sessions.get_session("SES-MON")
        assert fresh.cursor_day == monday
        assert fresh.last_recall_mark == 0

    def test_tokens_of_other_days_are_invisible(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
        monday: date,
    ) -> None:
        book([1, 2], day=monday + timedelta(days=7))
        assert service.call_next("DOC-1").exhausted


class TestSideEffects:
    def test_call_history_records_kinds(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book(range(1, 4))
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        service.call_next("DOC-1")
        _serve(service, tokens[2])
        service.call_next("DOC-1")
        _serve(service, tokens[3])
        service.call_next("DOC-1")

        events = storage.call_history.list_events(session_id="SES-MON")
        assert [e.call_type for e in reversed(events)] == [
            "normal",
            "normal",
            "normal",
            "recall",
        ]
        assert events[0].recall_reason == "auto-recall after 2 completions"
        assert events[0].called_by == "DOC-1"

    def test_history_failure_does_not_fail_call(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        book([1])
        storage.call_history.append = MagicMock(side_effect=RuntimeError("db down"))

        result = service.call_next("DOC-1")
        assert result.token_number == 1
        assert storage.sessions.get_session("SES-MON").current_token == 1

    def test_history_uses_service_clock(
        self,
        service: QueueService,
        storage: InMemoryStorage,
        clock: Any,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        tokens = book([1])
        service.call_next("DOC-1")
        service.mark_no_show(tokens[1].id)
        clock.advance(7)
        recalled = service.call_next("DOC-1")

        recall_event, first_event = storage.call_history.list_events(session_id="SES-MON")
        assert recall_event.called_at == recalled.token.last_recalled_at == clock.now
        assert first_event.called_at == clock.now - timedelta(minutes=7)

    def test_queue_context_is_unbound_after_call(
        self,
        service: QueueService,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        book([1])
        structlog.contextvars.clear_contextvars()
        seen: dict[str, Any] = {}

        original = service._resolver._record_call

        def capture(*args: Any) -> None:
            seen.update(structlog.contextvars.get_contextvars())
            original(*args)

        service._resolver._record_call = capture  # type: ignore[method-assign]
        service.call_next("DOC-1")

        assert seen["session_id"] == "SES-MON"
        assert structlog.contextvars.get_contextvars() == {}

    def test_presence_set_to_consulting(
        self,
        service: QueueService,
        presence: InMemoryPresence,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        book([1])
        service.call_next("DOC-1")
        assert presence.current("DOC-1") == DoctorStatus.consulting

    def test_no_presence_change_when_exhausted(
        self,
        service: QueueService,
        presence: InMemoryPresence,
    ) -> None:
        service.call_next("DOC-1")
        assert presence.history == []

    def test_presence_failure_is_swallowed(
        self,
        storage: InMemoryStorage,
        clock: Any,
        book: Callable[..., dict[int, Token]],
    ) -> None:
        book([1])
        presence = MagicMock()
        presence.notify.side_effect = ConnectionError("redis gone")
        resolver = NextTokenResolver(storage, presence=presence, clock=clock)

        assert resolver.call_next("DOC-1").token_number == 1
        presence.notify.assert_called_once()
