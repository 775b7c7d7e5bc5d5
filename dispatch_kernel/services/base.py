"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session-handling contract for every write
    service in the kernel layer.  Services use ``session.flush()`` and
    never ``session.commit()``; the orchestration services in
    ``dispatch_services`` own the transaction boundary.
"""

from abc import ABC

from sqlalchemy.orm import Session

from dispatch_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; the caller controls transaction
          boundaries, enabling atomic multi-step operations.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
