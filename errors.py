"""Error taxonomy shared by the casino core and its HTTP surface.

Every failure carries a stable machine-readable ``kind`` and the HTTP status
it maps to. Handlers in ``main`` render them as ``{"error": ..., "kind": ...}``.
"""


class CasinoError(Exception):
    kind = "internal"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind}


class InvalidInput(CasinoError):
    kind = "invalid_input"
    status_code = 400
    default_message = "Invalid input"


class SeedNotRevealed(InvalidInput):
    kind = "seed_not_revealed"
    default_message = "Seed has not been revealed yet; rotate it first"


class InvalidStake(CasinoError):
    kind = "invalid_stake"
    status_code = 400
    default_message = "Invalid stake"


class GameUnavailable(CasinoError):
    kind = "game_unavailable"
    status_code = 400
    default_message = "Game temporarily unavailable"


class Unauthenticated(CasinoError):
    kind = "unauthenticated"
    status_code = 401
    default_message = "Could not validate credentials"


class Forbidden(CasinoError):
    kind = "forbidden"
    status_code = 403
    default_message = "Admin access required"


class NotFound(CasinoError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class InsufficientFunds(CasinoError):
    kind = "insufficient_funds"
    status_code = 409
    default_message = "Insufficient funds"


class Internal(CasinoError):
    pass


class Unavailable(CasinoError):
    kind = "unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable, try again"
