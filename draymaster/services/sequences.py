"""
Document number allocation via locked counter rows.

Each counter is a DocumentSequence row locked with SELECT ... FOR UPDATE,
so concurrent invoice or settlement creation serializes on the counter
instead of racing on MAX()+1. The increment only becomes visible when the
caller's transaction commits; this service never commits.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.models.sequence import DocumentSequence
from draymaster.services.number_generator import NumberGenerator

logger = logging.getLogger(__name__)


class SequenceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_value(self, sequence_name: str) -> int:
        counter = (
            await self.db.execute(
                select(DocumentSequence)
                .where(DocumentSequence.name == sequence_name)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if counter is None:
            # A concurrent first allocation surfaces as IntegrityError on flush;
            # the automation service retries the whole unit of work.
            counter = DocumentSequence(name=sequence_name, current_value=0)
            self.db.add(counter)

        counter.current_value += 1
        await self.db.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    async def next_document_number(self, format_template: str, when: datetime) -> str:
        """Render the next number for a template, e.g. INV-20250106-0003."""
        is_valid, error = NumberGenerator.validate_format(format_template)
        if not is_valid:
            raise ValueError(error)

        scope = NumberGenerator.sequence_scope(format_template, when)
        value = await self.next_value(scope)
        return NumberGenerator.generate(format_template, value, date=when)
