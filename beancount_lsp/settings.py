"""
settings.py - Configuração do servidor

Propósito:
    Lê initializationOptions e workspace/didChangeConfiguration e produz
    um ServerSettings com os valores efetivos.

Chaves reconhecidas (seção 'beancount' ou dicionário direto):
    rootBeancountFile       → arquivo raiz passado ao validador ('~' expandido,
                              caminho relativo resolvido contra o cwd)
    validatorCommand        → argv do validador (string ou lista)
    validation.enabled      → habilita/desabilita o validador no save
    clearStaleDiagnostics   → limpa arquivos ausentes da nova execução

Notas de implementação:
    - Valores inválidos caem no padrão (nunca levanta exceção)
    - Chaves ausentes mantêm o valor atual (atualização parcial)
"""

from __future__ import annotations

import logging
import os
import shlex
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# Wrapper que imprime erros e entradas sinalizadas em duas seções
DEFAULT_VALIDATOR_COMMAND: List[str] = [sys.executable, "-m", "beancount_lsp.bean_check"]


@dataclass(frozen=True)
class ServerSettings:
    root_beancount_file: Optional[str] = None
    validator_command: List[str] = field(default_factory=lambda: list(DEFAULT_VALIDATOR_COMMAND))
    validation_enabled: bool = True
    clear_stale_diagnostics: bool = True

    @property
    def workspace_root(self) -> Optional[Path]:
        """Diretório do arquivo raiz, usado para resolver caminhos do validador."""
        if not self.root_beancount_file:
            return None
        return Path(self.root_beancount_file).parent


def _parse_command(value) -> Optional[List[str]]:
    if isinstance(value, str) and value.strip():
        return shlex.split(value)
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return list(value)
    return None


def parse_settings(raw, current: Optional[ServerSettings] = None) -> ServerSettings:
    """
    Aplica um dicionário de configuração sobre as configurações atuais.

    Aceita {'beancount': {...}} ou a seção diretamente.
    """
    settings = current or ServerSettings()
    if not isinstance(raw, dict):
        return settings

    section = raw.get("beancount", raw)
    if not isinstance(section, dict):
        return settings

    changes = {}

    root_file = section.get("rootBeancountFile")
    if isinstance(root_file, str) and root_file:
        changes["root_beancount_file"] = os.path.abspath(os.path.expanduser(root_file))

    if "validatorCommand" in section:
        command = _parse_command(section["validatorCommand"])
        if command is None:
            logger.warning(f"validatorCommand inválido: {section['validatorCommand']!r}")
        else:
            changes["validator_command"] = command

    validation = section.get("validation")
    if isinstance(validation, dict) and "enabled" in validation:
        changes["validation_enabled"] = bool(validation["enabled"])

    if "clearStaleDiagnostics" in section:
        changes["clear_stale_diagnostics"] = bool(section["clearStaleDiagnostics"])

    return replace(settings, **changes)
