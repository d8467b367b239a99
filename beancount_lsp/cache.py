"""
cache.py - Cache de tokens semânticos por documento

Propósito:
    Armazena o último stream de tokens enviado ao cliente para cada
    documento, permitindo responder semanticTokens/full/delta com apenas
    as edições desde o resultado anterior.

Componentes principais:
    - CachedTokens: Stream codificado com result_id e timestamp
    - TokenCache: Dicionário de cache por URI de documento

Notas de implementação:
    - Cada documento tem no máximo um stream em cache (o mais recente)
    - result_id é um contador monotônico, único dentro da sessão
    - Acesso serializado pelo event loop do pygls; não há locks
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CachedTokens:
    """Stream de tokens em cache com timestamp."""

    result_id: str
    data: List[int]
    timestamp: float = field(default_factory=time.time)


class TokenCache:
    """Cache do último stream de tokens por documento."""

    def __init__(self):
        self._cache: dict[str, CachedTokens] = {}
        self._ids = itertools.count(1)

    def next_result_id(self) -> str:
        """Gera um result_id novo para a sessão."""
        return str(next(self._ids))

    def get(self, uri: str) -> Optional[CachedTokens]:
        """Retorna o stream em cache para o documento, ou None."""
        return self._cache.get(uri)

    def lookup(self, uri: str, result_id: Optional[str]) -> Optional[CachedTokens]:
        """
        Retorna o stream em cache apenas se result_id ainda for o atual.

        Um result_id antigo (já substituído) ou desconhecido retorna None.
        """
        cached = self.get(uri)
        if cached is None or result_id is None or cached.result_id != result_id:
            return None
        return cached

    def put(self, uri: str, data: List[int]) -> CachedTokens:
        """Substitui o stream em cache do documento por um novo resultado."""
        cached = CachedTokens(result_id=self.next_result_id(), data=list(data))
        self._cache[uri] = cached
        logger.debug(f"Tokens em cache para {uri}: result_id={cached.result_id}")
        return cached

    def invalidate(self, uri: str) -> None:
        """Remove o stream em cache do documento."""
        if self._cache.pop(uri, None):
            logger.debug(f"Cache de tokens invalidado para: {uri}")
