"""
Module: dispatch_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.  Selectors
    are the read side of the kernel: structured access to stock and document
    data without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller and never
      call session.add(), session.delete(), session.commit() or
      session.flush().
    - DTO return convention: selectors return frozen dataclasses or computed
      values, not ORM instances.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        The caller owns the session and its transaction scope.
    """

    def __init__(self, session: Session):
        self.session = session
