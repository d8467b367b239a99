"""
beancount_lsp - Language Server Protocol para Beancount

Propósito:
    Servidor LSP que fornece colorização semântica e diagnósticos do
    bean-check para arquivos Beancount no VSCode e outros editores.

Componentes principais:
    - server: Servidor principal usando pygls
    - semantic_tokens: Classificação de nós da árvore tree-sitter
    - validator: Execução do validador externo e parsing da saída
    - converters: Conversão ValidatorEntry → LSP Diagnostic

Dependências críticas:
    - pygls: Framework LSP
    - tree-sitter + tree-sitter-beancount: Parser incremental

Exemplo de uso:
    python -m beancount_lsp
"""
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
import re


def _read_version_from_pyproject() -> str:
    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    try:
        text = pyproject.read_text(encoding="utf-8")
    except OSError:
        return "0.0.0"
    match = re.search(r'(?m)^version = "([^"]+)"\s*$', text)
    return match.group(1) if match else "0.0.0"


try:
    __version__ = _pkg_version("beancount-lsp")
except PackageNotFoundError:
    __version__ = _read_version_from_pyproject()

__all__ = ["server", "semantic_tokens", "validator", "converters"]
