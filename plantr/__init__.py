"""Plantr: state reconciliation and live sync for plant pot command queues."""

from .cache import Cache
from .cancel import CancelToken
from .config import Config, load_config
from .errors import (
    DecryptionError,
    FormatError,
    NotFoundError,
    OperationCancelled,
    PlantrError,
    PublishError,
    RelayTimeoutError,
    ValidationError,
)
from .secret_codec import SecretCodec
from .signer import Signer, SignerFactory, WatchOnlySigner
from .store import PlantLogStore, PlantPotStore, WeatherStore
from .subscriptions import Subscription, SubscriptionManager, SubscriptionState

__version__ = "0.1.0"

__all__ = [
    "Cache",
    "CancelToken",
    "Config",
    "DecryptionError",
    "FormatError",
    "NotFoundError",
    "OperationCancelled",
    "PlantLogStore",
    "PlantPotStore",
    "PlantrError",
    "PublishError",
    "RelayTimeoutError",
    "SecretCodec",
    "Signer",
    "SignerFactory",
    "Subscription",
    "SubscriptionManager",
    "SubscriptionState",
    "ValidationError",
    "WatchOnlySigner",
    "WeatherStore",
    "load_config",
]
