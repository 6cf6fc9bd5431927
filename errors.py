class FoodBridgeError(Exception):
    """Base class for errors the app knows how to present."""


class IdentityError(FoodBridgeError):
    """Sign-up / sign-in rejected. The message is shown to the user as-is."""


class GateRedirect(FoodBridgeError):
    """Raised by the authorization gate; turned into a silent redirect."""

    def __init__(self, url: str):
        super().__init__(url)
        self.url = url


class LifecycleError(FoodBridgeError):
    pass


class DonationNotFound(LifecycleError):
    def __init__(self, donation_id: int):
        super().__init__(f"Donation {donation_id} not found.")
        self.donation_id = donation_id


class TransitionConflict(LifecycleError):
    """The row no longer matched the transition's precondition."""

    def __init__(self, donation_id: int, message: str):
        super().__init__(message)
        self.donation_id = donation_id


class VolunteerOffline(LifecycleError):
    pass


class StoreError(FoodBridgeError):
    """The store failed for a reason unrelated to any precondition."""


class GateLoading(FoodBridgeError):
    """The session is still being resolved; show a placeholder, nothing else."""
