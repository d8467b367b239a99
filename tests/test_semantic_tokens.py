"""
test_semantic_tokens.py - Testes para colorização semântica

Propósito:
    Validar a classificação de nós tree-sitter, a ordem dos tokens,
    a negociação do legend e o encoding full/delta/range.
"""

from __future__ import annotations

from types import SimpleNamespace

from lsprotocol.types import Position, Range, SemanticTokens, SemanticTokensDelta

from beancount_lsp.cache import TokenCache
from beancount_lsp.semantic_tokens import (
    TOKEN_MODIFIERS,
    TOKEN_TYPES,
    ClassificationRule,
    Token,
    build_legend,
    compute_edits,
    compute_semantic_tokens,
    compute_semantic_tokens_delta,
    compute_semantic_tokens_range,
    encode_deltas,
    extract_tokens,
    negotiate_legend,
)


def node(kind, line, col, text="", children=None):
    """Nó falso com a mesma interface de tree_sitter.Node."""
    return SimpleNamespace(
        type=kind,
        start_point=(line, col),
        text=text.encode("utf-8"),
        children=children or [],
    )


def transaction_tree():
    """2024-01-15 * "Padaria"\n  Assets:Cash  -5.00 USD"""
    return node("file", 0, 0, "", [
        node("transaction", 0, 0, "", [
            node("date", 0, 0, "2024-01-15"),
            node("txn", 0, 11, "*"),
            node("string", 0, 13, '"Padaria"'),
            node("posting", 1, 2, "", [
                node("account", 1, 2, "Assets:Cash"),
                node("incomplete_amount", 1, 15, "-5.00 USD", [
                    node("number", 1, 15, "-5.00"),
                    node("currency", 1, 21, "USD"),
                ]),
            ]),
        ]),
        node("comment", 3, 0, "; fim"),
    ])


TYPE = {name: i for i, name in enumerate(TOKEN_TYPES)}


def test_missing_tree_yields_empty_stream():
    """Árvore ausente gera stream vazio, não erro."""
    cache = TokenCache()
    result = compute_semantic_tokens(None, "file:///a.bean", build_legend(), cache)
    assert result.data == []
    assert result.result_id is not None


def test_extract_tokens_preorder():
    """Tokens saem em pré-ordem com posição, comprimento e tipo corretos."""
    tokens = extract_tokens(transaction_tree(), build_legend())
    assert tokens == [
        Token(0, 0, 10, TYPE["number"], 0),
        Token(0, 11, 1, TYPE["property"], 0),
        Token(0, 13, 9, TYPE["string"], 0),
        Token(1, 2, 11, TYPE["type"], 0),
        Token(1, 15, 9, TYPE["number"], 0),
        Token(1, 21, 3, TYPE["property"], 0),
        Token(3, 0, 5, TYPE["comment"], 0),
    ]


def test_tokens_strictly_ordered():
    """Stream ordenado por (linha, coluna) sem posições repetidas."""
    tokens = extract_tokens(transaction_tree(), build_legend())
    starts = [(t.line, t.column) for t in tokens]
    assert starts == sorted(starts)
    assert len(set(starts)) == len(starts)


def test_unmapped_node_children_still_visited():
    """Nó sem regra não gera token, mas os filhos são classificados."""
    tree = node("posting", 0, 2, "", [node("account", 0, 2, "Expenses:Food")])
    tokens = extract_tokens(tree, build_legend())
    assert tokens == [Token(0, 2, len("Expenses:Food"), TYPE["type"], 0)]


def test_nested_classification_same_start_keeps_parent():
    """Filho começando na mesma posição do pai classificado é descartado."""
    rules = {
        "amount": ClassificationRule("number"),
        "number": ClassificationRule("constant"),
    }
    tree = node("amount", 0, 4, "10 USD", [node("number", 0, 4, "10")])
    tokens = extract_tokens(tree, build_legend(), rules)
    assert tokens == [Token(0, 4, 6, TYPE["number"], 0)]


def test_type_outside_legend_is_dropped():
    """Tipos fora do legend negociado não geram token."""
    legend = negotiate_legend(["type", "comment"], [])
    tokens = extract_tokens(transaction_tree(), legend)
    assert [t.token_type for t in tokens] == [
        legend.token_types.index("type"),
        legend.token_types.index("comment"),
    ]


def test_modifiers_mapped_to_legend_bits():
    """Modificadores viram bits pela posição no legend; ausentes são ignorados."""
    rules = {"account": ClassificationRule("type", frozenset({"deprecated", "abstract"}))}
    tree = node("account", 0, 0, "Assets:Old")

    full = extract_tokens(tree, build_legend(), rules)
    assert full[0].modifiers == 0b11

    partial = extract_tokens(tree, negotiate_legend(["type"], ["deprecated"]), rules)
    assert partial[0].modifiers == 0b1


def test_negotiate_legend_keeps_server_order():
    """Interseção pura preservando a ordem do servidor."""
    legend = negotiate_legend(["string", "number", "comment"], ["deprecated"])
    assert legend.token_types == ["comment", "string", "number"]
    assert legend.token_modifiers == ["deprecated"]


def test_negotiate_legend_empty_intersection():
    """Interseção vazia gera legend vazio e nenhum token."""
    legend = negotiate_legend(["macro"], [])
    assert legend.token_types == []
    assert legend.token_modifiers == []
    assert extract_tokens(transaction_tree(), legend) == []


def test_build_legend_is_fresh_copy():
    legend = build_legend()
    legend.token_types.append("x")
    assert build_legend().token_types == TOKEN_TYPES
    assert build_legend().token_modifiers == TOKEN_MODIFIERS


def test_encode_deltas_relative_positions():
    """deltaCol relativo na mesma linha, absoluto após quebra de linha."""
    tokens = [
        Token(0, 0, 10, 3, 0),
        Token(0, 11, 1, 5, 0),
        Token(2, 4, 8, 4, 0),
    ]
    assert encode_deltas(tokens) == [
        0, 0, 10, 3, 0,
        0, 11, 1, 5, 0,
        2, 4, 8, 4, 0,
    ]


def test_compute_edits_identical():
    assert compute_edits([0, 0, 3, 1, 0], [0, 0, 3, 1, 0]) == []


def test_compute_edits_replaces_middle_run():
    """Prefixo e sufixo comuns não entram na edição."""
    previous = [0, 0, 3, 1, 0,  1, 0, 4, 2, 0,  1, 0, 5, 3, 0]
    current = [0, 0, 3, 1, 0,  1, 0, 9, 2, 0,  1, 0, 5, 3, 0]
    edits = compute_edits(previous, current)
    assert len(edits) == 1
    assert edits[0].start == 5
    assert edits[0].delete_count == 5
    assert edits[0].data == [1, 0, 9, 2, 0]


def test_compute_edits_insertion_at_end():
    previous = [0, 0, 3, 1, 0]
    current = [0, 0, 3, 1, 0,  2, 0, 4, 2, 0]
    edits = compute_edits(previous, current)
    assert edits[0].start == 5
    assert edits[0].delete_count == 0
    assert edits[0].data == [2, 0, 4, 2, 0]


def test_compute_edits_removal():
    previous = [0, 0, 3, 1, 0,  2, 0, 4, 2, 0]
    current = [0, 0, 3, 1, 0]
    edits = compute_edits(previous, current)
    assert edits[0].start == 5
    assert edits[0].delete_count == 5
    assert edits[0].data == []


def test_delta_idempotent_without_edits():
    """Dois encodes sem edição: delta entre eles é vazio."""
    cache = TokenCache()
    tree = transaction_tree()
    legend = build_legend()
    uri = "file:///a.bean"

    compute_semantic_tokens(tree, uri, legend, cache)
    second = compute_semantic_tokens(tree, uri, legend, cache)
    delta = compute_semantic_tokens_delta(tree, uri, second.result_id, legend, cache)

    assert isinstance(delta, SemanticTokensDelta)
    assert delta.edits == []
    assert delta.result_id != second.result_id


def test_delta_after_edit_applies_to_previous():
    """Aplicar as edições ao stream anterior reproduz o stream atual."""
    cache = TokenCache()
    legend = build_legend()
    uri = "file:///a.bean"
    first = compute_semantic_tokens(transaction_tree(), uri, legend, cache)

    edited = transaction_tree()
    edited.children.append(node("comment", 5, 0, "; nova linha"))
    delta = compute_semantic_tokens_delta(edited, uri, first.result_id, legend, cache)

    data = list(first.data)
    for edit in delta.edits:
        data[edit.start:edit.start + edit.delete_count] = edit.data
    assert data == compute_semantic_tokens(edited, uri, legend, TokenCache()).data


def test_delta_unknown_result_id_falls_back_to_full():
    cache = TokenCache()
    result = compute_semantic_tokens_delta(
        transaction_tree(), "file:///a.bean", "999", build_legend(), cache
    )
    assert isinstance(result, SemanticTokens)
    assert len(result.data) == 7 * 5


def test_delta_stale_result_id_falls_back_to_full():
    """Result id já substituído é tratado como ausente."""
    cache = TokenCache()
    legend = build_legend()
    uri = "file:///a.bean"
    first = compute_semantic_tokens(transaction_tree(), uri, legend, cache)
    compute_semantic_tokens(transaction_tree(), uri, legend, cache)

    result = compute_semantic_tokens_delta(transaction_tree(), uri, first.result_id, legend, cache)
    assert isinstance(result, SemanticTokens)


def test_every_encode_replaces_cache_entry():
    cache = TokenCache()
    legend = build_legend()
    uri = "file:///a.bean"
    first = compute_semantic_tokens(transaction_tree(), uri, legend, cache)
    delta = compute_semantic_tokens_delta(None, uri, first.result_id, legend, cache)

    assert cache.get(uri).result_id == delta.result_id
    assert cache.get(uri).data == []


def test_range_filters_by_start_position():
    """Range devolve apenas tokens que começam dentro dele."""
    cache = TokenCache()
    range_ = Range(start=Position(line=1, character=0), end=Position(line=2, character=0))
    result = compute_semantic_tokens_range(transaction_tree(), range_, build_legend())

    assert result.data == [
        1, 2, 11, TYPE["type"], 0,
        0, 13, 9, TYPE["number"], 0,
        0, 6, 3, TYPE["property"], 0,
    ]
    assert cache.get("file:///a.bean") is None


def cafe_tree(source):
    """Colunas como o tree-sitter reporta: offsets em bytes UTF-8."""
    line = source.encode("utf-8")
    string_start = line.index(b'"')
    tag_start = line.index(b"#")
    return node("file", 0, 0, "", [
        node("transaction", 0, 0, "", [
            node("date", 0, 0, "2024-01-02"),
            node("txn", 0, 11, "*"),
            node("string", 0, string_start, source[13:source.index("#") - 1]),
            node("tag", 0, tag_start, source[source.index("#"):]),
        ]),
    ])


def test_non_ascii_columns_in_utf16_units():
    """Colunas e comprimentos após texto acentuado saem em unidades UTF-16."""
    source = '2024-01-02 * "Café ☕" #trip'
    tokens = extract_tokens(cafe_tree(source), build_legend(), source=source.encode("utf-8"))

    assert tokens == [
        Token(0, 0, 10, TYPE["number"], 0),
        Token(0, 11, 1, TYPE["property"], 0),
        Token(0, 13, 8, TYPE["string"], 0),
        Token(0, 22, 5, TYPE["constant"], 0),
    ]


def test_astral_characters_count_as_two_units():
    """Caracteres fora do BMP ocupam dois code units UTF-16."""
    source = '2024-01-02 * "🍕" #x'
    result = compute_semantic_tokens(
        cafe_tree(source), "file:///a.bean", build_legend(), TokenCache(),
        source=source.encode("utf-8"),
    )

    assert result.data == [
        0, 0, 10, TYPE["number"], 0,
        0, 11, 1, TYPE["property"], 0,
        0, 2, 4, TYPE["string"], 0,
        0, 5, 2, TYPE["constant"], 0,
    ]
