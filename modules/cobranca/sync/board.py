# board.py
# Estado em memória da lista de cobranças abertas, indexado pelo id da cobrança.

from __future__ import annotations
from datetime import date
from typing import Any, Dict, Iterable, Iterator, List, Optional

FILTRO_TODAS = "todas"
FILTRO_ATIVAS = "ativas"
FILTRO_INATIVAS = "inativas"
FILTROS = (FILTRO_TODAS, FILTRO_ATIVAS, FILTRO_INATIVAS)


def parse_vencimento(value: Any) -> Optional[date]:
    """`data_vencimento` é só data (yyyy-MM-dd); nunca passa por fuso horário."""
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def is_overdue(cobranca: Dict[str, Any], today: Optional[date] = None) -> bool:
    vencimento = parse_vencimento(cobranca.get("data_vencimento"))
    if vencimento is None:
        return False
    return vencimento < (today or date.today())


class ChargeBoard:
    """Lista de cobranças mantida pelo Reconciler.

    Só o Reconciler deve escrever aqui enquanto a assinatura estiver ativa.
    """

    def __init__(self, rows: Iterable[Dict[str, Any]] = ()):
        self._items: Dict[str, Dict[str, Any]] = {}
        self.load(rows)

    def load(self, rows: Iterable[Dict[str, Any]]) -> None:
        self._items = {row["id"]: dict(row) for row in rows}

    def merge(self, record: Dict[str, Any]) -> bool:
        """Sobrescreve só os campos presentes em `record`; o resto (ex.: `clientes`) é mantido."""
        row_id = record.get("id")
        current = self._items.get(row_id)
        if current is None:
            return False
        self._items[row_id] = {**current, **record}
        return True

    def remove(self, row_id: str) -> bool:
        return self._items.pop(row_id, None) is not None

    def get(self, row_id: str) -> Optional[Dict[str, Any]]:
        return self._items.get(row_id)

    def rows(self) -> List[Dict[str, Any]]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.rows())

    def filtered(self, search: str = "", ativa: str = FILTRO_TODAS) -> List[Dict[str, Any]]:
        termo = (search or "").strip().lower()
        result = []
        for cobranca in self._items.values():
            cliente_nome = ((cobranca.get("clientes") or {}).get("nome") or "").lower()
            cobranca_nome = (cobranca.get("nome") or "").lower()
            if termo and termo not in cliente_nome and termo not in cobranca_nome:
                continue
            if ativa == FILTRO_ATIVAS and not cobranca.get("ativa"):
                continue
            if ativa == FILTRO_INATIVAS and cobranca.get("ativa"):
                continue
            result.append(cobranca)
        return result
