"""
converters.py - Conversão entre saída do validador e tipos LSP

Propósito:
    Converter entradas do validador em Diagnostics do LSP, agrupá-las por
    arquivo e publicá-las por documento.
    Garante mapeamento correto de coordenadas (1-based → 0-based).

Componentes principais:
    - convert_severity: severidade do validador → DiagnosticSeverity
    - convert_line: linha 1-based → Range cobrindo a linha inteira
    - build_diagnostic: ValidatorEntry → Diagnostic
    - group_diagnostics: erros + flags → {caminho: [Diagnostic]}
    - remap_to_uris: {caminho: ...} → {URI: ...} relativo ao workspace root
    - DiagnosticPublisher: publica grupos e limpa diagnósticos obsoletos

Exemplo de uso:
    errors, flagged = parse_validator_output(run.output)
    groups = remap_to_uris(group_diagnostics(errors, flagged), root_dir)

Notas de implementação:
    - Linhas do validador são 1-based, LSP é 0-based
    - A ordem de aparição é a ordem de exibição (sem reordenação)
    - Arquivos sem entradas não aparecem no grupo
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from lsprotocol.types import (
    Diagnostic,
    DiagnosticSeverity,
    Position,
    Range,
)

from beancount_lsp.validator import SEVERITY_ERROR, SEVERITY_FLAGGED, ValidatorEntry

logger = logging.getLogger(__name__)

DIAGNOSTIC_SOURCE = "bean-check"

DiagnosticGroup = Dict[str, List[Diagnostic]]


def convert_severity(severity: str) -> DiagnosticSeverity:
    """
    Mapeia a severidade do validador para DiagnosticSeverity do LSP.

    Mapeamento:
        error   → DiagnosticSeverity.Error (1)
        flagged → DiagnosticSeverity.Warning (2)
    """
    mapping = {
        SEVERITY_ERROR: DiagnosticSeverity.Error,
        SEVERITY_FLAGGED: DiagnosticSeverity.Warning,
    }
    return mapping.get(severity, DiagnosticSeverity.Error)


def convert_line(line: int) -> Range:
    """Converte linha 1-based em Range 0-based cobrindo a linha inteira."""
    start_line = max(0, line - 1)
    return Range(
        start=Position(line=start_line, character=0),
        end=Position(line=start_line + 1, character=0),
    )


def build_diagnostic(entry: ValidatorEntry) -> Diagnostic:
    """Converte uma ValidatorEntry em Diagnostic do LSP."""
    return Diagnostic(
        range=convert_line(entry.line),
        severity=convert_severity(entry.severity),
        source=DIAGNOSTIC_SOURCE,
        message=entry.message,
    )


def group_diagnostics(
    errors: Iterable[ValidatorEntry],
    flagged: Iterable[ValidatorEntry],
) -> DiagnosticGroup:
    """
    Agrupa erros e entradas sinalizadas por caminho de arquivo.

    Erros vêm antes das flags; dentro de cada arquivo a ordem de entrada
    é preservada.
    """
    groups: DiagnosticGroup = {}
    for entries in (errors, flagged):
        for entry in entries:
            groups.setdefault(entry.file, []).append(build_diagnostic(entry))
    return groups


def to_document_uri(file_path: str, workspace_root: Path) -> str:
    """
    Resolve o caminho reportado contra o workspace root e gera a URI.

    Caminhos relativos são unidos ao workspace root; absolutos são mantidos.
    """
    path = Path(os.path.expanduser(file_path))
    if not path.is_absolute():
        path = workspace_root / path
    return Path(os.path.abspath(path)).as_uri()


def remap_to_uris(groups: DiagnosticGroup, workspace_root: Path) -> DiagnosticGroup:
    """Reescreve as chaves do grupo (caminhos) como URIs de documento."""
    remapped: DiagnosticGroup = {}
    for file_path, diagnostics in groups.items():
        uri = to_document_uri(file_path, workspace_root)
        remapped.setdefault(uri, []).extend(diagnostics)
    return remapped


class DiagnosticPublisher:
    """
    Publica grupos de diagnósticos por documento.

    Attributes:
        published_uris: URIs publicadas pela última execução aplicada
        last_sequence: Número da última execução aplicada
        clear_stale: Se True, URIs ausentes da nova execução recebem lista vazia
    """

    def __init__(
        self,
        publish: Callable[[str, List[Diagnostic]], None],
        clear_stale: bool = True,
    ):
        self._publish = publish
        self.clear_stale = clear_stale
        self.published_uris: Set[str] = set()
        self.last_sequence: int = 0

    def apply(self, groups: DiagnosticGroup, sequence: Optional[int] = None) -> bool:
        """
        Publica cada grupo (substituindo a lista anterior do documento).

        Resultados de execuções mais antigas que a última aplicada são
        descartados. Retorna True se o grupo foi publicado.
        """
        if sequence is not None:
            if sequence < self.last_sequence:
                logger.info(
                    f"Resultado do validador #{sequence} descartado "
                    f"(#{self.last_sequence} já aplicado)"
                )
                return False
            self.last_sequence = sequence

        for uri, diagnostics in groups.items():
            self._publish(uri, diagnostics)
            logger.debug(f"Publicados {len(diagnostics)} diagnósticos para {uri}")

        if self.clear_stale:
            for uri in sorted(self.published_uris - set(groups)):
                self._publish(uri, [])
                logger.debug(f"Diagnósticos obsoletos limpos para {uri}")
            self.published_uris = set(groups)
        else:
            self.published_uris |= set(groups)
        return True

    def clear_all(self) -> None:
        """Limpa todos os diagnósticos publicados (validação desativada)."""
        for uri in sorted(self.published_uris):
            self._publish(uri, [])
        self.published_uris = set()
