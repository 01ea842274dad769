import logging
from typing import Iterable, List, Protocol

logger = logging.getLogger(__name__)


class RoundObserver(Protocol):
    def round_resolved(self, receipt: dict) -> None:
        ...


class LoggingRoundObserver:
    """Writes one audit line per committed round."""

    def __init__(self, log: logging.Logger = None):
        self.log = log or logging.getLogger("casino.audit")

    def round_resolved(self, receipt: dict) -> None:
        self.log.info(
            f"round={receipt['round_id']} user={receipt['user_id']} game={receipt['game']} "
            f"counter={receipt['fairness']['counter_used']} stake={receipt['stake']} payout={receipt['payout']}"
        )


class RoundObservers:
    """Fan-out to the registered observers after a round has committed.

    The round is already durable when observers run: a failing observer is
    logged and skipped, and an empty registry does nothing.
    """

    def __init__(self, observers: Iterable[RoundObserver] = ()):
        self._observers: List[RoundObserver] = list(observers)

    def register(self, observer: RoundObserver) -> None:
        self._observers.append(observer)

    def notify(self, receipt: dict) -> None:
        for observer in self._observers:
            try:
                observer.round_resolved(receipt)
            except Exception:
                logger.exception(f"Round observer {type(observer).__name__} failed for round {receipt.get('round_id')}")
