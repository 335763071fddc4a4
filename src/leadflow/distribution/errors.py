"""Errors raised by lead distribution operations."""


class DistributionError(ValueError):
    """Base class for rejected distribution operations."""


class LeadNotFoundError(DistributionError):
    def __init__(self, lead_id: str):
        super().__init__(f"Lead not found: {lead_id}")
        self.lead_id = lead_id


class TeamNotFoundError(DistributionError):
    def __init__(self, team_id: str):
        super().__init__(f"Team not found: {team_id}")
        self.team_id = team_id


class RealtorNotInQueueError(DistributionError):
    def __init__(self, realtor_id: str):
        super().__init__(f"Realtor is not in the queue: {realtor_id}")
        self.realtor_id = realtor_id


class LeadAlreadyAcceptedError(DistributionError):
    """Another realtor accepted the lead first."""


class LeadReservedError(DistributionError):
    """The lead is inside another realtor's reservation window."""


class LeadNotAvailableError(DistributionError):
    """The lead's status does not allow the operation."""


class NotLeadHolderError(DistributionError):
    """Only the realtor holding the lead may do this."""


class DuplicateCandidatureError(DistributionError):
    pass


class InvalidMoveError(DistributionError):
    pass


class PermissionDeniedError(DistributionError):
    pass


class RealtorNotFoundError(DistributionError):
    def __init__(self, realtor_id: str):
        super().__init__(f"Realtor not found: {realtor_id}")
        self.realtor_id = realtor_id
