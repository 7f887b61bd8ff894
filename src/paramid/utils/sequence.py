#########################################################################################
##
##                           IDENTIFIER SEQUENCE SERVICE
##                               (utils/sequence.py)
##
##          Run-scoped, thread-safe counter handing out candidate identifiers.
##
#########################################################################################

# IMPORTS ===============================================================================

import threading


# SEQUENCE ==============================================================================

class IdSequence:
    """Monotonically increasing identifier source.

    One instance is owned by an identification run and injected into every
    :class:`~paramid.ident.generation.Generation` it builds, so identifiers
    stay unique across generations and are never reused. Access is
    serialized by a lock, which makes concurrent candidate creation safe.

    Parameters
    ----------
    start : int
        First identifier handed out.
    """

    def __init__(self, start: int = 0):
        self._next = int(start)
        self._lock = threading.Lock()


    def next(self) -> int:
        """Return the next identifier and advance the counter."""
        with self._lock:
            value = self._next
            self._next += 1
        return value


    def reserve(self, n: int) -> list[int]:
        """Return ``n`` consecutive identifiers in one locked step."""
        if n < 0:
            raise ValueError(f"cannot reserve {n} identifiers")
        with self._lock:
            first = self._next
            self._next += n
        return list(range(first, first + n))


    @property
    def value(self) -> int:
        """Identifier that the next call to :meth:`next` returns."""
        with self._lock:
            return self._next


    def __repr__(self) -> str:
        return f"IdSequence(next={self.value})"
