"""
validator.py - Execução do validador externo e parsing da saída

Propósito:
    Roda o validador Beancount (bean-check ou equivalente) fora do processo
    e transforma sua saída textual em entradas posicionadas.

Componentes principais:
    - ValidatorEntry: Uma linha da saída (arquivo, linha, severidade, mensagem)
    - ValidatorRun: Resultado estruturado de uma execução
    - run_validator: Executa o processo via asyncio e coleta stdout+stderr
    - parse_validator_output: Divide a saída em erros e entradas sinalizadas

Formato esperado da saída:
    <texto livre / erros>
    <linha em branco>
    /caminho/arquivo.bean:10: Mensagem
    /caminho/arquivo.bean:12: Outra mensagem

Notas de implementação:
    - A primeira linha em branco separa a seção de erros da seção de flags;
      sem linha em branco, toda a saída é seção de erros
    - Linhas fora do padrão nunca geram exceção: linhas indentadas após
      uma entrada viram continuação da mensagem, as demais são ignoradas
    - Sem timeout e sem cancelamento: cada save dispara uma execução
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

SEVERITY_ERROR = "error"
SEVERITY_FLAGGED = "flagged"

# <arquivo>:<linha>: <mensagem>  (o arquivo pode conter ':' em drives Windows)
_RE_ENTRY = re.compile(r"^(?P<file>.+?):(?P<line>\d+):\s*(?P<message>.*)$")

_run_counter = itertools.count(1)


@dataclass(frozen=True)
class ValidatorEntry:
    """Uma entrada posicionada da saída do validador (linha 1-based)."""

    file: str
    line: int
    severity: str
    message: str


@dataclass(frozen=True)
class ValidatorRun:
    """Resultado de uma execução do validador."""

    sequence: int
    success: bool
    output: str = ""
    reason: Optional[str] = None
    returncode: Optional[int] = None


def _parse_section(text: str, severity: str) -> List[ValidatorEntry]:
    entries: List[ValidatorEntry] = []

    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if not line.strip():
            continue

        m = _RE_ENTRY.match(line)
        if m and not line[0].isspace():
            entries.append(
                ValidatorEntry(
                    file=m.group("file"),
                    line=int(m.group("line")),
                    severity=severity,
                    message=m.group("message").strip(),
                )
            )
            continue

        # Continuação da mensagem anterior
        if entries and line[0].isspace():
            previous = entries[-1]
            entries[-1] = ValidatorEntry(
                file=previous.file,
                line=previous.line,
                severity=previous.severity,
                message=f"{previous.message}\n{line.strip()}",
            )
            continue

        logger.debug(f"Linha do validador ignorada: {line!r}")

    return entries


def split_sections(text: str) -> Tuple[str, str]:
    """Divide a saída na primeira linha em branco: (erros, flags)."""
    lines = text.splitlines()
    for index, line in enumerate(lines):
        if not line.strip():
            return "\n".join(lines[:index]), "\n".join(lines[index + 1:])
    return text, ""


def parse_validator_output(text: Optional[str]) -> Tuple[List[ValidatorEntry], List[ValidatorEntry]]:
    """
    Converte a saída do validador em duas listas ordenadas de entradas.

    Returns:
        (erros, entradas sinalizadas), na ordem em que aparecem
    """
    if not text:
        return [], []

    errors_text, flagged_text = split_sections(text)
    return (
        _parse_section(errors_text, SEVERITY_ERROR),
        _parse_section(flagged_text, SEVERITY_FLAGGED),
    )


async def run_validator(command: Sequence[str], root_file: str) -> ValidatorRun:
    """
    Executa o validador com o arquivo raiz como argumento.

    stdout e stderr são combinados. Falha de spawn, erro de I/O ou código
    de saída diferente de zero resultam em ValidatorRun(success=False).
    """
    sequence = next(_run_counter)
    argv = [*command, root_file]
    logger.info(f"Executando validador (#{sequence}): {' '.join(argv)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        return ValidatorRun(
            sequence=sequence,
            success=False,
            reason=f"Falha ao iniciar validador {argv[0]!r}: {e}",
        )

    try:
        stdout, _ = await process.communicate()
    except OSError as e:
        return ValidatorRun(
            sequence=sequence,
            success=False,
            reason=f"Erro ao ler saída do validador: {e}",
        )

    output = stdout.decode("utf-8", errors="replace") if stdout else ""

    if process.returncode != 0:
        return ValidatorRun(
            sequence=sequence,
            success=False,
            output=output,
            reason=f"Validador terminou com código {process.returncode}",
            returncode=process.returncode,
        )

    return ValidatorRun(
        sequence=sequence,
        success=True,
        output=output,
        returncode=process.returncode,
    )
