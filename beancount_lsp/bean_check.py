"""
bean_check.py - Validador padrão do servidor

Propósito:
    Carrega o ledger com a biblioteca beancount e imprime o relatório no
    formato de duas seções que o servidor consome:

        <arquivo>:<linha>: <erro>
            <continuação indentada>
        <linha em branco>
        <arquivo>:<linha>: <entrada sinalizada>

Uso:
    python -m beancount_lsp.bean_check /caminho/main.bean

Notas de implementação:
    - Sai sempre com código 0 quando o ledger é carregado; erros do ledger
      são conteúdo do relatório, não falha de execução
    - A seção de erros nunca contém linhas em branco (a primeira linha em
      branco é o separador)
    - Erros sem posição de origem são atribuídos ao arquivo raiz, linha 1
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, List, Optional

from beancount import loader
from beancount.core import data, flags

logger = logging.getLogger(__name__)


def _source_of(meta, default_file: str):
    if not meta:
        return default_file, 1
    return meta.get("filename") or default_file, meta.get("lineno") or 1


def format_error(error, default_file: str) -> List[str]:
    """Formata um erro do loader: primeira linha posicionada, resto indentado."""
    filename, lineno = _source_of(getattr(error, "source", None), default_file)
    message_lines = [l.strip() for l in str(error.message).splitlines() if l.strip()]
    if not message_lines:
        message_lines = [type(error).__name__]

    lines = [f"{filename}:{lineno}: {message_lines[0]}"]
    lines.extend(f"    {l}" for l in message_lines[1:])
    return lines


def flagged_lines(entries: Iterable, default_file: str) -> List[str]:
    """Linhas para transações e postings marcados com a flag '!'."""
    lines: List[str] = []
    for entry in entries:
        if not isinstance(entry, data.Transaction):
            continue

        if entry.flag == flags.FLAG_WARNING:
            filename, lineno = _source_of(entry.meta, default_file)
            lines.append(f"{filename}:{lineno}: Transação sinalizada: {entry.narration}")

        for posting in entry.postings:
            if posting.flag != flags.FLAG_WARNING:
                continue
            filename, lineno = _source_of(posting.meta, default_file)
            lines.append(f"{filename}:{lineno}: Posting sinalizado: {posting.account}")
    return lines


def format_report(entries: Iterable, errors: Iterable, root_file: str) -> str:
    """Monta o relatório: erros, linha em branco, entradas sinalizadas."""
    lines: List[str] = []
    for error in errors:
        lines.extend(format_error(error, root_file))
    lines.append("")
    lines.extend(flagged_lines(entries, root_file))
    return "\n".join(lines) + "\n"


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="beancount_lsp.bean_check",
        description="Valida um ledger Beancount e lista erros e entradas sinalizadas",
    )
    parser.add_argument("filename", help="Arquivo raiz do ledger")
    args = parser.parse_args(argv)

    entries, errors, _ = loader.load_file(args.filename)
    logger.debug(f"{len(entries)} entradas, {len(errors)} erros em {args.filename}")

    sys.stdout.write(format_report(entries, errors, args.filename))
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
