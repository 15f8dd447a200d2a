"""Testes do TranscriptBuffer."""

from __future__ import annotations

from escuta.session.transcript import TranscriptBuffer


class TestDeltas:
    def test_deltas_accumulate(self) -> None:
        buffer = TranscriptBuffer()

        assert buffer.append_delta("Hel") == "Hel"
        assert buffer.append_delta("lo ") == "Hello "
        assert buffer.in_progress == "Hello "

    def test_empty_delta_keeps_text(self) -> None:
        buffer = TranscriptBuffer()
        buffer.append_delta("abc")

        assert buffer.append_delta("") == "abc"


class TestComplete:
    def test_complete_trims_and_clears(self) -> None:
        buffer = TranscriptBuffer()
        buffer.append_delta("Hel")
        buffer.append_delta("lo ")

        final = buffer.complete(" Hello world ")

        assert final == "Hello world"
        assert buffer.in_progress == ""
        assert buffer.utterances == ["Hello world"]

    def test_blank_completion_clears_without_utterance(self) -> None:
        buffer = TranscriptBuffer()
        buffer.append_delta("uh")

        assert buffer.complete("   ") is None
        assert buffer.in_progress == ""
        assert buffer.utterances == []

    def test_full_transcript_joins_with_space(self) -> None:
        buffer = TranscriptBuffer()
        buffer.complete("primeira frase.")
        buffer.complete("segunda frase.")

        assert buffer.full_transcript == "primeira frase. segunda frase."

    def test_completion_text_wins_over_deltas(self) -> None:
        buffer = TranscriptBuffer()
        buffer.append_delta("helo")

        assert buffer.complete("hello") == "hello"


class TestReset:
    def test_utterances_returns_copy(self) -> None:
        buffer = TranscriptBuffer()
        buffer.complete("a")

        buffer.utterances.append("b")

        assert buffer.utterances == ["a"]

    def test_reset_in_progress_keeps_utterances(self) -> None:
        buffer = TranscriptBuffer()
        buffer.complete("a")
        buffer.append_delta("parcial")

        buffer.reset_in_progress()

        assert buffer.in_progress == ""
        assert buffer.utterances == ["a"]

    def test_clear_discards_everything(self) -> None:
        buffer = TranscriptBuffer()
        buffer.complete("a")
        buffer.append_delta("b")

        buffer.clear()

        assert buffer.in_progress == ""
        assert buffer.full_transcript == ""
