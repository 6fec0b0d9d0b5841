"""
Custom exceptions for the OEV seeker.
"""


class SeekerError(Exception):
    """Base exception for all seeker errors."""


class ConfigError(SeekerError):
    """Raised for configuration-related errors."""


class StorageNotInitializedError(SeekerError):
    """Raised when a loop reads store data that startup has not populated yet."""


class SimulationError(SeekerError):
    """Raised when simulation return data cannot be decoded."""


class TransactionFailedError(SeekerError):
    """Raised when a submitted transaction is mined with a failed status."""


class NoActiveBidError(SeekerError):
    """Raised when a liquidation is attempted without an active bid."""


class BidAlreadyActiveError(SeekerError):
    """Raised when placing a bid while another one is still active."""


class ScanAbortedError(SeekerError):
    """Raised when a simulation reverts while evaluating an account, ending the scan."""
