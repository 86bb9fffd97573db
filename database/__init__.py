"""
Happen data layer

MongoDB-backed models for events, venues, users and their social features.
"""
from .counters import CounterMaintainer
from .mongodb_setup import MongoDBSetup
from .services import HappenServices

__version__ = "1.0.0"
__all__ = ["MongoDBSetup", "CounterMaintainer", "HappenServices"]
