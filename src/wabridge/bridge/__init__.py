"""Page instrumentation: request interception, script injection, function and event bridging."""

from wabridge.bridge.functions import FunctionBridge
from wabridge.bridge.injector import ScriptInjector
from wabridge.bridge.interceptor import Disposition, RequestInterceptor
from wabridge.bridge.relay import EventRelay

__all__ = ["Disposition", "EventRelay", "FunctionBridge", "RequestInterceptor", "ScriptInjector"]
