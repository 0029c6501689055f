"""
Module: inventory_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/dtos.py.  MUST NOT import from services/.

Invariants enforced:
    - Selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs or plain values, not ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Read-only query base.

    Contract:
        Accepts a Session from the caller and performs queries only.
    """

    def __init__(self, session: Session):
        self.session = session
