"""Error taxonomy shared by the resolvers, the ledger and the services.

Every error carries a stable ``code`` so that clients can branch on the kind
of failure without parsing the message.
"""


class SettlementError(Exception):
    code = "settlement_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class ExternalEntropyUnavailable(SettlementError):
    code = "external_entropy_unavailable"


class InsufficientBalance(SettlementError):
    code = "insufficient_balance"


class RoundAlreadyClosed(SettlementError):
    code = "round_already_closed"


class AlreadySettled(SettlementError):
    code = "already_settled"


class ConcurrencyConflict(SettlementError):
    code = "concurrency_conflict"


class MalformedOutcomeInput(SettlementError):
    code = "malformed_outcome_input"


class RoundNotFound(SettlementError):
    code = "round_not_found"


class InvalidRoundState(SettlementError):
    code = "invalid_round_state"


class ParticipantsNotReady(SettlementError):
    code = "participants_not_ready"


class RoundFull(SettlementError):
    code = "round_full"


class AlreadyJoined(SettlementError):
    code = "already_joined"


class NotRoundCreator(SettlementError):
    code = "not_round_creator"


class SeatTaken(SettlementError):
    code = "seat_taken"


class PositionNotFound(SettlementError):
    code = "position_not_found"
