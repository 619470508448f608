# errors.py
"""
Exceptions raised by the tariff engine
"""


class TariffError(Exception):
    """Base class for every error raised while pricing a bill."""


class InvalidInputError(TariffError, ValueError):
    """Consumption is missing, negative, zero or not a finite number."""


class ConfigurationError(TariffError):
    """The tariff table is malformed or has no tier for the consumption."""
