"""Runtime collaborators and periodic processes: clock, timers, gateway,
parameter store, intensity ramp, scheduler and the main engine."""

from .clock import Clock, ManualClock, SystemClock
from .timers import AsyncioTimerService, ManualTimerService, TimerHandle, TimerService
from .gateway import CallbackFeatureGateway, FeatureGateway, LoggingFeatureGateway
from .parameters import DEFAULT_PARAMETER_CEILINGS, InMemoryParameterStore, ParameterStore
from .ramp import IntensityRamp, RampState
from .scheduler import Scheduler, SchedulerRuntimeState, is_in_window
from .control import EngineControl, MainEngine

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "AsyncioTimerService",
    "ManualTimerService",
    "TimerHandle",
    "TimerService",
    "CallbackFeatureGateway",
    "FeatureGateway",
    "LoggingFeatureGateway",
    "DEFAULT_PARAMETER_CEILINGS",
    "InMemoryParameterStore",
    "ParameterStore",
    "IntensityRamp",
    "RampState",
    "Scheduler",
    "SchedulerRuntimeState",
    "is_in_window",
    "EngineControl",
    "MainEngine",
]
