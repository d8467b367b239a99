"""
forest.py - Árvores sintáticas tree-sitter por documento

Propósito:
    Mantém a árvore tree-sitter atual de cada documento aberto e refaz o
    parse quando o conteúdo muda.

Componentes principais:
    - load_beancount_language: Carrega a gramática tree-sitter-beancount
    - Forest: Dicionário URI → Tree com parse sob demanda

Notas de implementação:
    - O parser é injetado no construtor (testes usam um parser falso)
    - Parse completo a cada mudança; o documento inteiro vem do pygls
    - O texto-fonte em bytes é guardado para converter colunas para UTF-16
"""

from __future__ import annotations

import logging
from typing import Optional

import tree_sitter

logger = logging.getLogger(__name__)


def load_beancount_language():
    """Carrega a gramática Beancount para o tree-sitter."""
    try:
        import tree_sitter_beancount
    except ImportError as e:
        raise ImportError(
            "Gramática 'tree_sitter_beancount' não encontrada. "
            "Instale com: pip install tree-sitter-beancount"
        ) from e

    return tree_sitter.Language(tree_sitter_beancount.language())


def create_parser(language=None):
    """Cria um tree_sitter.Parser configurado para Beancount."""
    return tree_sitter.Parser(language or load_beancount_language())


class Forest:
    """Árvores sintáticas atuais e texto-fonte, indexados por URI do documento."""

    def __init__(self, parser):
        self._parser = parser
        self._trees: dict[str, object] = {}
        self._sources: dict[str, bytes] = {}

    def parse(self, uri: str, source: str):
        """Refaz o parse do documento e substitui a árvore armazenada."""
        encoded = source.encode("utf-8")
        tree = self._parser.parse(encoded)
        self._trees[uri] = tree
        self._sources[uri] = encoded
        logger.debug(f"Árvore atualizada para {uri}")
        return tree

    def get_tree(self, uri: str) -> Optional[object]:
        """Retorna a árvore atual do documento, ou None se nunca parseado."""
        return self._trees.get(uri)

    def get_source(self, uri: str) -> Optional[bytes]:
        """Texto-fonte (UTF-8) usado no último parse do documento."""
        return self._sources.get(uri)

    def remove(self, uri: str) -> None:
        """Descarta a árvore de um documento fechado."""
        self._trees.pop(uri, None)
        self._sources.pop(uri, None)
