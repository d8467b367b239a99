"""
server.py - Servidor LSP principal para Beancount usando pygls

Propósito:
    Servidor Language Server Protocol que fornece colorização semântica
    e diagnósticos do validador para arquivos Beancount em editores
    compatíveis.

Componentes principais:
    - BeancountLanguageServer: Servidor principal com pygls
    - run_validation: Executa o validador e publica diagnósticos
    - Event handlers: initialize, initialized, did_open, did_change,
      did_close, did_save, did_change_configuration, semantic tokens

Dependências críticas:
    - pygls: Framework LSP
    - tree-sitter-beancount: Gramática para a árvore sintática
    - beancount_lsp.semantic_tokens / validator / converters

Exemplo de uso:
    python -m beancount_lsp

Notas de implementação:
    - Comunica via STDIO (entrada/saída padrão)
    - Legend negociado no initialize; semantic tokens registrado
      dinamicamente no initialized
    - Validador roda no save como subprocesso asyncio (não bloqueia)
    - Tratamento robusto de exceções (nunca crasha)
"""

from __future__ import annotations

import logging
import sys
from importlib import metadata
from typing import Optional, Union

from lsprotocol.types import (
    INITIALIZE,
    INITIALIZED,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL,
    TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL_DELTA,
    TEXT_DOCUMENT_SEMANTIC_TOKENS_RANGE,
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    DidChangeConfigurationParams,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveTextDocumentParams,
    InitializeParams,
    InitializedParams,
    MessageType,
    Registration,
    RegistrationParams,
    SemanticTokens,
    SemanticTokensDelta,
    SemanticTokensDeltaParams,
    SemanticTokensLegend,
    SemanticTokensParams,
    SemanticTokensRangeParams,
)
from pygls.server import LanguageServer

from beancount_lsp import __version__
from beancount_lsp.cache import TokenCache
from beancount_lsp.converters import DiagnosticPublisher, group_diagnostics, remap_to_uris
from beancount_lsp.forest import Forest, create_parser
from beancount_lsp.semantic_tokens import (
    build_legend,
    compute_semantic_tokens,
    compute_semantic_tokens_delta,
    compute_semantic_tokens_range,
    negotiate_legend,
)
from beancount_lsp.settings import ServerSettings, parse_settings
from beancount_lsp.validator import parse_validator_output, run_validator

# Configuração de logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SEMANTIC_TOKENS_REGISTRATION_ID = "beancount-semantic-tokens"
# Método de registro dinâmico cobre full, delta e range
SEMANTIC_TOKENS_REGISTRATION_METHOD = "textDocument/semanticTokens"
LANGUAGE_ID = "beancount"


class BeancountLanguageServer(LanguageServer):
    """
    Servidor LSP especializado para Beancount.

    Attributes:
        settings: Configuração efetiva (initializationOptions + didChangeConfiguration)
        forest: Árvores tree-sitter por documento (None até main() criar o parser)
        token_cache: Último stream de tokens enviado por documento
        legend: Legend negociado com o cliente, ou None se o cliente não
                suporta semantic tokens
        diagnostic_publisher: Publica grupos do validador e limpa obsoletos
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.settings: ServerSettings = ServerSettings()
        self.forest: Optional[Forest] = None
        self.token_cache: TokenCache = TokenCache()
        self.legend: Optional[SemanticTokensLegend] = None
        self.diagnostic_publisher = DiagnosticPublisher(self.publish_diagnostics)


# Instância global do servidor
server = BeancountLanguageServer("beancount-lsp", f"v{__version__}")


def _legend(ls: BeancountLanguageServer) -> SemanticTokensLegend:
    return ls.legend if ls.legend is not None else build_legend()


def _get_tree(ls: BeancountLanguageServer, uri: str):
    if ls.forest is None:
        return None
    return ls.forest.get_tree(uri)


def _get_source(ls: BeancountLanguageServer, uri: str) -> Optional[bytes]:
    if ls.forest is None:
        return None
    return ls.forest.get_source(uri)


def _reparse(ls: BeancountLanguageServer, uri: str) -> None:
    if ls.forest is None:
        return
    try:
        doc = ls.workspace.get_document(uri)
        ls.forest.parse(uri, doc.source)
    except Exception as e:
        logger.error(f"Erro ao fazer parse de {uri}: {e}", exc_info=True)


def _legend_registration_options(legend: SemanticTokensLegend) -> dict:
    return {
        "documentSelector": [{"language": LANGUAGE_ID}],
        "legend": {
            "tokenTypes": list(legend.token_types),
            "tokenModifiers": list(legend.token_modifiers),
        },
        "range": True,
        "full": {"delta": True},
    }


@server.feature(INITIALIZE)
def initialize(ls: BeancountLanguageServer, params: InitializeParams) -> None:
    """
    Lê initializationOptions e negocia o legend de semantic tokens.

    O legend fica fixo pelo resto da sessão.
    """
    ls.settings = parse_settings(params.initialization_options, ls.settings)
    ls.diagnostic_publisher.clear_stale = ls.settings.clear_stale_diagnostics
    if not ls.settings.root_beancount_file:
        logger.warning("rootBeancountFile ausente em initializationOptions; validação no save desativada")

    text_document = getattr(params.capabilities, "text_document", None)
    semantic = getattr(text_document, "semantic_tokens", None) if text_document else None
    if semantic is None:
        logger.info("Cliente não suporta semantic tokens")
        ls.legend = None
        return

    ls.legend = negotiate_legend(semantic.token_types, semantic.token_modifiers)
    logger.info(
        f"Legend negociado: tipos={ls.legend.token_types} "
        f"modificadores={ls.legend.token_modifiers}"
    )


@server.feature(INITIALIZED)
def initialized(ls: BeancountLanguageServer, params: InitializedParams) -> None:
    """Registra semantic tokens dinamicamente com o legend negociado."""
    if ls.legend is None:
        return

    try:
        ls.register_capability(
            RegistrationParams(
                registrations=[
                    Registration(
                        id=SEMANTIC_TOKENS_REGISTRATION_ID,
                        method=SEMANTIC_TOKENS_REGISTRATION_METHOD,
                        register_options=_legend_registration_options(ls.legend),
                    )
                ]
            )
        )
    except Exception as e:
        logger.error(f"Falha ao registrar semantic tokens: {e}", exc_info=True)


@server.feature(TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL)
def semantic_tokens_full(
    ls: BeancountLanguageServer, params: SemanticTokensParams
) -> SemanticTokens:
    """Retorna o stream completo de tokens e o guarda no cache."""
    uri = params.text_document.uri
    try:
        return compute_semantic_tokens(
            _get_tree(ls, uri), uri, _legend(ls), ls.token_cache, _get_source(ls, uri)
        )
    except Exception as e:
        logger.error(f"Erro ao calcular semantic tokens de {uri}: {e}", exc_info=True)
        return SemanticTokens(data=[])


@server.feature(TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL_DELTA)
def semantic_tokens_delta(
    ls: BeancountLanguageServer, params: SemanticTokensDeltaParams
) -> Union[SemanticTokens, SemanticTokensDelta]:
    """
    Retorna apenas as edições desde previous_result_id.

    result_id desconhecido ou obsoleto produz stream completo.
    """
    uri = params.text_document.uri
    try:
        return compute_semantic_tokens_delta(
            _get_tree(ls, uri),
            uri,
            params.previous_result_id,
            _legend(ls),
            ls.token_cache,
            _get_source(ls, uri),
        )
    except Exception as e:
        logger.error(f"Erro ao calcular semantic tokens delta de {uri}: {e}", exc_info=True)
        return SemanticTokens(data=[])


@server.feature(TEXT_DOCUMENT_SEMANTIC_TOKENS_RANGE)
def semantic_tokens_range(
    ls: BeancountLanguageServer, params: SemanticTokensRangeParams
) -> SemanticTokens:
    uri = params.text_document.uri
    try:
        return compute_semantic_tokens_range(
            _get_tree(ls, uri), params.range, _legend(ls), _get_source(ls, uri)
        )
    except Exception as e:
        logger.error(f"Erro ao calcular semantic tokens (range) de {uri}: {e}", exc_info=True)
        return SemanticTokens(data=[])


async def run_validation(ls: BeancountLanguageServer) -> None:
    """
    Executa o validador sobre o arquivo raiz e publica diagnósticos.

    Fluxo:
        1. Verifica se validação está habilitada e se há arquivo raiz
        2. Executa o validador (subprocesso asyncio)
        3. Falha → canal de erro, diagnósticos anteriores mantidos
        4. Sucesso → parse, agrupamento por arquivo, publicação
    """
    settings = ls.settings
    if not settings.validation_enabled:
        logger.debug("Validação desabilitada, pulando")
        return
    if not settings.root_beancount_file:
        logger.debug("Sem rootBeancountFile, pulando validação")
        return

    run = await run_validator(settings.validator_command, settings.root_beancount_file)

    if not run.success:
        logger.error(f"Validador falhou (#{run.sequence}): {run.reason}")
        if run.output:
            logger.debug(f"Saída do validador:\n{run.output}")
        ls.show_message_log(f"bean-check: {run.reason}", MessageType.Error)
        return

    try:
        errors, flagged = parse_validator_output(run.output)
        groups = remap_to_uris(
            group_diagnostics(errors, flagged), settings.workspace_root
        )
        if ls.diagnostic_publisher.apply(groups, run.sequence):
            logger.info(
                f"Validação #{run.sequence} completa: "
                f"{len(errors)} erros, {len(flagged)} sinalizados, "
                f"{len(groups)} arquivos"
            )
    except Exception as e:
        logger.error(f"Erro ao processar saída do validador: {e}", exc_info=True)


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: BeancountLanguageServer, params: DidOpenTextDocumentParams) -> None:
    """Faz o parse do documento recém-aberto."""
    uri = params.text_document.uri
    logger.info(f"Documento aberto: {uri}")
    _reparse(ls, uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: BeancountLanguageServer, params: DidChangeTextDocumentParams) -> None:
    """Refaz o parse após mudança; os tokens são recalculados sob demanda."""
    uri = params.text_document.uri
    logger.debug(f"Documento modificado: {uri}")
    _reparse(ls, uri)


@server.feature(TEXT_DOCUMENT_DID_CLOSE)
def did_close(ls: BeancountLanguageServer, params: DidCloseTextDocumentParams) -> None:
    """
    Descarta árvore e tokens em cache do documento.

    Diagnósticos do validador cobrem o projeto inteiro e são mantidos.
    """
    uri = params.text_document.uri
    logger.info(f"Documento fechado: {uri}")
    if ls.forest is not None:
        ls.forest.remove(uri)
    ls.token_cache.invalidate(uri)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
async def did_save(ls: BeancountLanguageServer, params: DidSaveTextDocumentParams) -> None:
    """
    Handler para salvamento de documento.

    Cada save dispara uma execução independente do validador; execuções
    sobrepostas não são canceladas nem deduplicadas.
    """
    logger.info(f"Documento salvo: {params.text_document.uri}")
    await run_validation(ls)


@server.feature(WORKSPACE_DID_CHANGE_CONFIGURATION)
async def did_change_configuration(
    ls: BeancountLanguageServer, params: DidChangeConfigurationParams
) -> None:
    """
    Handler para mudanças na configuração do workspace.

    Validação desativada limpa os diagnósticos publicados; reativada
    dispara uma nova execução do validador.
    """
    try:
        old_enabled = ls.settings.validation_enabled
        ls.settings = parse_settings(params.settings, ls.settings)
        ls.diagnostic_publisher.clear_stale = ls.settings.clear_stale_diagnostics
        logger.info(f"Configuração atualizada: validation.enabled = {ls.settings.validation_enabled}")

        if old_enabled and not ls.settings.validation_enabled:
            logger.info("Validação desativada, limpando diagnósticos")
            ls.diagnostic_publisher.clear_all()
        elif not old_enabled and ls.settings.validation_enabled:
            logger.info("Validação reativada, executando validador")
            await run_validation(ls)

    except Exception as e:
        logger.error(f"Erro ao processar mudança de configuração: {e}", exc_info=True)


def main() -> None:
    """
    Ponto de entrada principal do servidor.

    Inicia servidor LSP em modo STDIO para comunicação com o editor.
    """
    logger.info("Iniciando Beancount Language Server...")
    logger.info("Python executable: %s", sys.executable)
    try:
        logger.info("beancount-lsp package: %s", metadata.version("beancount-lsp"))
    except metadata.PackageNotFoundError:
        logger.info("beancount-lsp package: %s (não instalado)", __version__)

    if server.forest is None:
        server.forest = Forest(create_parser())
    server.start_io()


if __name__ == "__main__":
    main()
