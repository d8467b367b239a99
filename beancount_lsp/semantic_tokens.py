"""
semantic_tokens.py - Colorização semântica via árvore tree-sitter

Propósito:
    Percorre a árvore sintática do documento Beancount e produz tokens
    semânticos que o editor exibirá com cores baseadas no tipo do nó,
    incluindo o protocolo incremental semanticTokens/full/delta.

Mapeamento de nós tree-sitter → LSP:
    date, amount, incomplete_amount   → Number
    txn, currency                     → Property
    account                           → Type
    key                               → Label
    string                            → String
    tag                               → Constant
    comment                           → Comment

Notas de implementação:
    - Travessia pré-ordem: pai antes dos filhos, irmãos da esquerda para a
      direita, o que já produz tokens ordenados por (linha, coluna)
    - Classificar um nó não impede a classificação dos seus descendentes
    - Legend negociado com o cliente; tipos fora do legend são descartados
    - Colunas do tree-sitter (bytes UTF-8) convertidas para unidades UTF-16
    - Encoding delta: [deltaLine, deltaStartChar, length, tokenType, tokenModifiers]
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Tuple, Union

from lsprotocol.types import (
    Range,
    SemanticTokens,
    SemanticTokensDelta,
    SemanticTokensEdit,
    SemanticTokensLegend,
)

from beancount_lsp.cache import TokenCache

logger = logging.getLogger(__name__)

# Tipos de tokens do servidor, na ordem canônica
TOKEN_TYPES: List[str] = [
    "comment",    # 0
    "keyword",    # 1
    "string",     # 2
    "number",     # 3
    "type",       # 4
    "property",   # 5
    "parameter",  # 6
    "label",      # 7
    "constant",   # 8
]

TOKEN_MODIFIERS: List[str] = [
    "abstract",    # 0
    "deprecated",  # 1
]

# Inteiros por token no array codificado
TOKEN_WIDTH = 5


class ClassificationRule(NamedTuple):
    token_type: str
    modifiers: FrozenSet[str] = frozenset()


# Tipo de nó tree-sitter → classificação
CLASSIFICATION_RULES: Dict[str, ClassificationRule] = {
    "date": ClassificationRule("number"),
    "txn": ClassificationRule("property"),
    "account": ClassificationRule("type"),
    "amount": ClassificationRule("number"),
    "incomplete_amount": ClassificationRule("number"),
    "currency": ClassificationRule("property"),
    "key": ClassificationRule("label"),
    "string": ClassificationRule("string"),
    "tag": ClassificationRule("constant"),
    "comment": ClassificationRule("comment"),
}


class Token(NamedTuple):
    """Token classificado: posição 0-based, índice no legend e bitmask."""

    line: int
    column: int
    length: int
    token_type: int
    modifiers: int


def build_legend() -> SemanticTokensLegend:
    """Cria uma instância fresca do legend completo do servidor."""
    return SemanticTokensLegend(
        token_types=list(TOKEN_TYPES),
        token_modifiers=list(TOKEN_MODIFIERS),
    )


def negotiate_legend(
    client_token_types: Iterable[str],
    client_token_modifiers: Iterable[str],
) -> SemanticTokensLegend:
    """
    Intersecta os tipos/modificadores do cliente com os do servidor.

    O resultado segue a ordem canônica do servidor. Interseção vazia gera
    um legend vazio (válido: nenhum token será emitido).
    """
    client_types = set(client_token_types or [])
    client_modifiers = set(client_token_modifiers or [])
    return SemanticTokensLegend(
        token_types=[t for t in TOKEN_TYPES if t in client_types],
        token_modifiers=[m for m in TOKEN_MODIFIERS if m in client_modifiers],
    )


def _resolve_rules(
    legend: SemanticTokensLegend,
    rules: Dict[str, ClassificationRule],
) -> Dict[str, Tuple[int, int]]:
    """Pré-calcula (índice do tipo, bitmask) por tipo de nó para o legend."""
    type_index = {name: i for i, name in enumerate(legend.token_types)}
    modifier_bit = {name: 1 << i for i, name in enumerate(legend.token_modifiers)}

    resolved: Dict[str, Tuple[int, int]] = {}
    for kind, rule in rules.items():
        index = type_index.get(rule.token_type)
        if index is None:
            continue
        bitmask = 0
        for modifier in rule.modifiers:
            bitmask |= modifier_bit.get(modifier, 0)
        resolved[kind] = (index, bitmask)
    return resolved


def _utf16_len(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


class _ColumnMapper:
    """Converte colunas em bytes UTF-8 (tree-sitter) para unidades UTF-16 (LSP)."""

    def __init__(self, source: Union[bytes, str, None]):
        if isinstance(source, str):
            source = source.encode("utf-8")
        self._lines = source.split(b"\n") if source else []

    def to_utf16(self, line: int, byte_column: int) -> int:
        # Sem o texto-fonte a coluna só é correta para linhas ASCII
        if line >= len(self._lines):
            return byte_column
        prefix = self._lines[line][:byte_column]
        return _utf16_len(prefix.decode("utf-8", errors="replace"))


def _node_length(node) -> int:
    text = node.text
    if text is None:
        return 0
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return _utf16_len(text)


def extract_tokens(
    root,
    legend: SemanticTokensLegend,
    rules: Optional[Dict[str, ClassificationRule]] = None,
    source: Union[bytes, str, None] = None,
) -> List[Token]:
    """
    Extrai tokens percorrendo a árvore em pré-ordem.

    Nós sem regra não geram token, mas seus filhos continuam sendo
    visitados. Um token que não começa estritamente depois do anterior
    é descartado para manter a ordem total exigida pelo encoding delta.

    Colunas do tree-sitter são offsets em bytes UTF-8; com o texto-fonte
    elas são convertidas para unidades UTF-16, como o LSP espera.
    Comprimentos são sempre medidos em unidades UTF-16.
    """
    if root is None:
        return []

    resolved = _resolve_rules(legend, CLASSIFICATION_RULES if rules is None else rules)
    columns = _ColumnMapper(source)
    tokens: List[Token] = []
    last_start: Optional[Tuple[int, int]] = None

    stack = [root]
    while stack:
        node = stack.pop()
        classification = resolved.get(node.type)
        if classification is not None:
            line = node.start_point[0]
            column = columns.to_utf16(line, node.start_point[1])
            length = _node_length(node)
            if last_start is not None and (line, column) <= last_start:
                logger.debug(
                    f"Token fora de ordem descartado: {node.type} em {line}:{column}"
                )
            elif length > 0:
                tokens.append(Token(line, column, length, *classification))
                last_start = (line, column)
        stack.extend(reversed(node.children))

    return tokens


def encode_deltas(tokens: List[Token]) -> List[int]:
    """
    Codifica tokens já ordenados no formato delta LSP.

    Formato: [deltaLine, deltaStartChar, length, tokenType, tokenModifiers]
    Cada token é relativo ao anterior.
    """
    data: List[int] = []
    prev_line = 0
    prev_col = 0

    for line, col, length, token_type, modifiers in tokens:
        delta_line = line - prev_line
        delta_col = col - prev_col if delta_line == 0 else col

        data.extend([delta_line, delta_col, length, token_type, modifiers])

        prev_line = line
        prev_col = col

    return data


def compute_edits(previous: List[int], current: List[int]) -> List[SemanticTokensEdit]:
    """
    Calcula as edições que transformam o array anterior no atual.

    Remove prefixo e sufixo comuns (em unidades de token) e devolve no
    máximo uma edição substituindo o trecho do meio. Arrays iguais
    produzem lista vazia.
    """
    if previous == current:
        return []

    old_count = len(previous) // TOKEN_WIDTH
    new_count = len(current) // TOKEN_WIDTH

    def chunk(data: List[int], index: int) -> List[int]:
        return data[index * TOKEN_WIDTH:(index + 1) * TOKEN_WIDTH]

    prefix = 0
    while (
        prefix < old_count
        and prefix < new_count
        and chunk(previous, prefix) == chunk(current, prefix)
    ):
        prefix += 1

    suffix = 0
    while (
        suffix < old_count - prefix
        and suffix < new_count - prefix
        and chunk(previous, old_count - 1 - suffix) == chunk(current, new_count - 1 - suffix)
    ):
        suffix += 1

    return [
        SemanticTokensEdit(
            start=prefix * TOKEN_WIDTH,
            delete_count=(old_count - prefix - suffix) * TOKEN_WIDTH,
            data=current[prefix * TOKEN_WIDTH:(new_count - suffix) * TOKEN_WIDTH],
        )
    ]


def _root_of(tree):
    if tree is None:
        return None
    return getattr(tree, "root_node", tree)


def compute_semantic_tokens(
    tree,
    uri: str,
    legend: SemanticTokensLegend,
    cache: TokenCache,
    source: Union[bytes, str, None] = None,
) -> SemanticTokens:
    """
    Encode completo: ignora o cache anterior e devolve o stream inteiro.

    Árvore ausente gera stream vazio. O resultado substitui a entrada do
    documento no cache.
    """
    data = encode_deltas(extract_tokens(_root_of(tree), legend, source=source))
    cached = cache.put(uri, data)
    return SemanticTokens(data=data, result_id=cached.result_id)


def compute_semantic_tokens_delta(
    tree,
    uri: str,
    previous_result_id: Optional[str],
    legend: SemanticTokensLegend,
    cache: TokenCache,
    source: Union[bytes, str, None] = None,
) -> Union[SemanticTokens, SemanticTokensDelta]:
    """
    Encode delta contra o resultado identificado por previous_result_id.

    Se o result_id for desconhecido ou já substituído, devolve o stream
    completo (sem estado anterior, não é erro).
    """
    previous = cache.lookup(uri, previous_result_id)
    data = encode_deltas(extract_tokens(_root_of(tree), legend, source=source))
    cached = cache.put(uri, data)

    if previous is None:
        logger.debug(
            f"result_id {previous_result_id} sem estado para {uri}, enviando stream completo"
        )
        return SemanticTokens(data=data, result_id=cached.result_id)

    return SemanticTokensDelta(
        edits=compute_edits(previous.data, data),
        result_id=cached.result_id,
    )


def compute_semantic_tokens_range(
    tree,
    range_: Range,
    legend: SemanticTokensLegend,
    source: Union[bytes, str, None] = None,
) -> SemanticTokens:
    """Tokens cujo início está dentro do range pedido. Não altera o cache."""
    start = (range_.start.line, range_.start.character)
    end = (range_.end.line, range_.end.character)
    tokens = [
        token
        for token in extract_tokens(_root_of(tree), legend, source=source)
        if start <= (token.line, token.column) < end
    ]
    return SemanticTokens(data=encode_deltas(tokens))
