"""TranscriptBuffer — texto em andamento + utterances finalizadas.

Invariante: o texto em andamento e limpo exatamente uma vez por evento
Completed, atomicamente com o append da utterance finalizada.
"""

from __future__ import annotations


class TranscriptBuffer:
    """Acumula deltas e utterances finalizadas de uma transcricao."""

    def __init__(self) -> None:
        self._in_progress = ""
        self._utterances: list[str] = []

    @property
    def in_progress(self) -> str:
        """Concatenacao dos deltas da utterance atual."""
        return self._in_progress

    @property
    def utterances(self) -> list[str]:
        """Copia das utterances finalizadas, em ordem."""
        return list(self._utterances)

    @property
    def full_transcript(self) -> str:
        """Utterances finalizadas unidas por espaco."""
        return " ".join(self._utterances)

    def append_delta(self, text: str) -> str:
        """Concatena um delta. Retorna o texto acumulado."""
        self._in_progress += text
        return self._in_progress

    def complete(self, text: str) -> str | None:
        """Finaliza a utterance atual.

        Limpa o texto em andamento e, se o texto final (trimmed) nao e
        vazio, o adiciona as utterances.

        Returns:
            Texto final trimmed, ou None se vazio.
        """
        final = text.strip()
        self._in_progress = ""
        if not final:
            return None
        self._utterances.append(final)
        return final

    def reset_in_progress(self) -> None:
        """Descarta o texto em andamento (nova sessao)."""
        self._in_progress = ""

    def clear(self) -> None:
        """Descarta tudo."""
        self._in_progress = ""
        self._utterances.clear()
