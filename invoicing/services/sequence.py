"""Invoice numbering.

Os números saem de uma linha contador (``sequence_counters``) incrementada com um
único UPDATE atômico dentro da transação de quem chama. Nada de max()+1 a cada
fatura: o max() só é lido uma vez, para semear o contador no primeiro uso (ou
para ressincronizar depois de um conflito no unique de ``invoice_number``).

A numeração é global (não por tenant).
"""
from __future__ import annotations

import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from invoicing.core.config import INVOICE_NUMBER_START
from invoicing.core.errors import PersistenceError
from invoicing.models.invoice import Invoice
from invoicing.models.sequence_counter import SequenceCounter

logger = logging.getLogger(__name__)

INVOICE_SEQUENCE = "invoice_number"


class SequenceAllocator:
    """Does not commit: the value is consumed only if the caller's transaction commits."""

    def __init__(self, db: Session, *, name: str = INVOICE_SEQUENCE, start: int = INVOICE_NUMBER_START):
        self.db = db
        self.name = name
        self.start = start

    def next_invoice_number(self) -> int:
        if not self._increment():
            self._create_counter()
            if not self._increment():
                raise PersistenceError("Invoice number counter is unavailable")

        value = self.current_value()
        if value is None:
            raise PersistenceError("Invoice number counter is unavailable")
        logger.debug("invoice number allocated sequence=%s value=%s", self.name, value)
        return value

    def current_value(self) -> int | None:
        return (
            self.db.query(SequenceCounter.current_value)
            .filter(SequenceCounter.name == self.name)
            .scalar()
        )

    def resync(self) -> int:
        """Move o contador para depois do maior número já gravado."""
        floor = self._max_assigned()
        result = self.db.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == self.name, SequenceCounter.current_value < floor)
            .values(current_value=floor)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.warning("invoice number counter resynced sequence=%s value=%s", self.name, floor)
        return floor

    def _increment(self) -> bool:
        # UPDATE ... SET current_value = current_value + 1: o lock de linha serializa os concorrentes
        result = self.db.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == self.name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _max_assigned(self) -> int:
        current_max = self.db.query(func.max(Invoice.invoice_number)).scalar()
        return max(int(current_max or 0), self.start - 1)

    def _create_counter(self) -> None:
        seed = self._max_assigned()
        try:
            with self.db.begin_nested():
                self.db.add(SequenceCounter(name=self.name, current_value=seed))
        except IntegrityError:
            # Outra transação criou o contador antes; segue para o incremento
            logger.info("invoice number counter created concurrently sequence=%s", self.name)
        else:
            logger.info("invoice number counter created sequence=%s seed=%s", self.name, seed)
