"""
Repository base class for queries that run inside a caller's session.
"""

import logging
from typing import Generic, Iterator, List, Type, TypeVar

from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)

T = TypeVar('T')


class BaseRepository(Generic[T]):
    """
    Queries for one model, bound to an open session.

    Repositories never commit; the session's owner decides when the
    transaction ends.
    """

    model_class: Type[T] = None

    def __init__(self, session: Session):
        if self.model_class is None:
            raise ValueError(f"{self.__class__.__name__} must set model_class")
        self.session = session

    def iter_pages(self, stmt, page_size: int = 50) -> Iterator[List[T]]:
        """
        Yield ``stmt`` results ``page_size`` rows at a time.

        ``stmt`` needs a deterministic ORDER BY or pages may overlap.
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        offset = 0
        while True:
            page = list(self.session.scalars(stmt.limit(page_size).offset(offset)))
            if page:
                logger.debug(f"{self.model_class.__name__} page at offset {offset}: {len(page)} row(s)")
                yield page
            if len(page) < page_size:
                return
            offset += page_size
