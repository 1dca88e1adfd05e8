"""RestProxyCall - One configurable, executable REST request.

A call collects a method, a function (path suffix), headers and params,
then executes through exactly one of these modes at a time:

- sync(): blocks the calling thread on the executor's blocking client.
- call_async(): dispatches on the running asyncio loop and invokes a
  callback once on completion.
- run(): call_async() driven to completion on a private event loop.
- invoke() / invoke_finish(): dispatches on the running loop and hands back
  an awaitable InvokeResult whose outcome is collected with invoke_finish().

Every mode ends in _finish_call(), which records the response and maps it to
an error. Asynchronous modes carry an _AsyncClosure that keeps the call alive
until completion and owns the optional observer watch; the closure is torn
down exactly once, on the completion path, whether the request finished
normally or was cancelled.

State machine: IDLE -> IN_FLIGHT -> COMPLETED -> IDLE. Starting while not
IDLE raises CallInProgressError.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Generator, Iterable, Mapping

import httpx

from rest_proxy.error_mapper import error_for_response
from rest_proxy.errors import CallError, CallInProgressError, InvocationStateError
from rest_proxy.executor import Invocation
from rest_proxy.models import Param, RawResponse
from rest_proxy.params import HeaderSet, ParamSet
from rest_proxy.request_builder import build_request

if TYPE_CHECKING:
    from rest_proxy.proxy import RestProxy

logger = logging.getLogger(__name__)

AsyncCallback = Callable[["RestProxyCall", "CallError | None", Any, Any], None]
InvokeCallback = Callable[["RestProxyCall", "InvokeResult", Any], None]
PrepareHook = Callable[["RestProxyCall", str], None]

DEFAULT_METHOD = "GET"


class CallState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"


class ObserverWatch:
    """Fires a trigger when the observed object is garbage collected.

    Only a weak reference to the observer is held. The trigger runs on
    whichever thread drops the last reference, so it must be thread-safe.
    """

    def __init__(self, observer: Any, trigger: Callable[[], None]) -> None:
        # Raises TypeError for objects that do not support weak references
        self._ref = weakref.ref(observer)
        self._finalizer = weakref.finalize(observer, trigger)
        self._finalizer.atexit = False

    @property
    def observer(self) -> Any:
        """The observer, or None once it has been destroyed."""
        return self._ref()

    @property
    def active(self) -> bool:
        return self._finalizer.alive

    def release(self) -> None:
        """Stop watching. Safe to call more than once."""
        self._finalizer.detach()


class InvokeResult:
    """Outcome of one invoke(), collected with RestProxyCall.invoke_finish().

    Awaiting the result waits for completion without raising; the error, if
    any, is raised by invoke_finish().
    """

    def __init__(
        self,
        call: RestProxyCall,
        future: asyncio.Future[None],
        callback: InvokeCallback | None,
        user_data: Any,
    ) -> None:
        self.call = call
        self._future = future
        self._callback = callback
        self._user_data = user_data
        self._completed = False
        self._finished = False
        self._error: CallError | None = None

    def done(self) -> bool:
        return self._completed

    @property
    def finished(self) -> bool:
        return self._finished

    def add_done_callback(self, fn: Callable[[InvokeResult], None]) -> None:
        """Run fn(result) on completion (immediately if already complete)."""
        if self._completed:
            fn(self)
        else:
            self._future.add_done_callback(lambda _: fn(self))

    def __await__(self) -> Generator[Any, None, None]:
        # Shielded so cancelling an awaiting task does not cancel the outcome
        return asyncio.shield(self._future).__await__()

    def _complete(self, error: CallError | None) -> None:
        self._error = error
        self._completed = True
        if not self._future.done():
            self._future.set_result(None)
        if self._callback is not None:
            self._callback(self.call, self, self._user_data)


@dataclass
class _AsyncClosure:
    """Completion context of one asynchronous execution.

    Holds a strong reference to the call so it outlives its creator until
    the completion path runs.
    """

    call: RestProxyCall
    callback: AsyncCallback | None = None
    user_data: Any = None
    result: InvokeResult | None = None
    watch: ObserverWatch | None = None
    invocation: Invocation | None = None


class RestProxyCall:
    """A single REST request against a RestProxy.

    Usage:
        call = proxy.new_call()
        call.set_method("POST")
        call.set_function("photos/upload")
        call.add_param("title", "Sunset")
        call.add_param_full(Param.blob("photo", data, "image/jpeg", "sunset.jpg"))
        call.sync()
        print(call.status_code, call.payload)

    Subclasses may override prepare() to sign or otherwise adjust the call
    right before it is encoded. Passing ``prepare=`` does the same without
    subclassing.
    """

    def __init__(self, proxy: RestProxy, prepare: PrepareHook | None = None) -> None:
        self.proxy = proxy
        self._prepare_hook = prepare

        self._method = DEFAULT_METHOD
        self._function: str | None = None
        self._params = ParamSet()
        self._headers = HeaderSet()

        self._state = CallState.IDLE
        self._closure: _AsyncClosure | None = None

        self._response_headers = HeaderSet()
        self._payload: bytes | None = None
        self._payload_length = 0
        self._status_code = 0
        self._status_message: str | None = None

    def __repr__(self) -> str:
        return f"<RestProxyCall {self._method} {self._function!r} {self._state.value}>"

    # =========================================================================
    # Configuration
    # =========================================================================

    @property
    def method(self) -> str:
        return self._method

    def set_method(self, method: str | None) -> None:
        """Set the HTTP method. None restores the default, GET."""
        self._method = method or DEFAULT_METHOD

    @property
    def function(self) -> str | None:
        return self._function

    def set_function(self, function: str | None) -> None:
        """Set the path appended to the proxy URL. None clears it."""
        self._function = function

    @property
    def headers(self) -> HeaderSet:
        return self._headers

    def add_header(self, name: str, value: str) -> None:
        self._headers.add(name, value)

    def add_headers(self, headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> None:
        """Add several headers from a mapping or a sequence of (name, value) pairs."""
        self._headers.update(headers)

    def lookup_header(self, name: str) -> str | None:
        return self._headers.get(name)

    def remove_header(self, name: str) -> None:
        self._headers.remove(name)

    @property
    def params(self) -> ParamSet:
        return self._params

    def add_param(self, name: str, value: str) -> None:
        """Add a string parameter, replacing any parameter of the same name."""
        self._params.add(Param.string(name, value))

    def add_param_full(self, param: Param) -> None:
        """Add a prebuilt parameter (string or blob)."""
        self._params.add(param)

    def add_params(self, params: Mapping[str, str] | Iterable[tuple[str, str]]) -> None:
        """Add several string parameters from a mapping or (name, value) pairs."""
        pairs = params.items() if isinstance(params, Mapping) else params
        for name, value in pairs:
            self.add_param(name, value)

    def lookup_param(self, name: str) -> Param | None:
        return self._params.get(name)

    def remove_param(self, name: str) -> None:
        self._params.remove(name)

    def prepare(self, url: str) -> None:
        """Hook run before encoding, with the final URL.

        The default runs the hook passed to the constructor, if any. Raising
        aborts the execution; the exception reaches the caller unchanged.
        """
        if self._prepare_hook is not None:
            self._prepare_hook(self, url)

    # =========================================================================
    # Results
    # =========================================================================

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._state is CallState.IN_FLIGHT

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def status_message(self) -> str | None:
        return self._status_message

    @property
    def payload(self) -> bytes | None:
        return self._payload

    @property
    def payload_length(self) -> int:
        return self._payload_length

    @property
    def response_headers(self) -> HeaderSet:
        return self._response_headers

    def lookup_response_header(self, name: str) -> str | None:
        return self._response_headers.get(name)

    # =========================================================================
    # Execution
    # =========================================================================

    def sync(self) -> None:
        """Execute on the calling thread.

        Raises:
            CallInProgressError: Another execution is outstanding.
            UnboundURLError: The proxy URL requires binding.
            CallError: The request failed or returned a non-2xx status.
        """
        request = self._start_execution()
        self._state = CallState.IN_FLIGHT
        try:
            raw = self.proxy.executor.send_blocking(request)
            error = self._finish_call(raw)
        finally:
            self._state = CallState.IDLE

        if error is not None:
            raise error

    def call_async(
        self,
        callback: AsyncCallback,
        observer: Any = None,
        user_data: Any = None,
    ) -> None:
        """Dispatch on the running event loop and return immediately.

        On completion ``callback(call, error, observer, user_data)`` runs
        once on the loop thread; ``error`` is None on success. If ``observer``
        is given and is garbage collected first, the call is cancelled and
        the callback receives a CallCancelledError (and ``observer`` None).

        Raises:
            CallInProgressError: Another execution is outstanding.
            UnboundURLError: The proxy URL requires binding.
            TypeError: The observer cannot be weakly referenced.
            RuntimeError: No event loop is running.
        """
        request = self._start_execution()
        closure = _AsyncClosure(call=self, callback=callback, user_data=user_data)
        self._dispatch(request, closure, observer, self._on_call_completed)

    def run(self, raise_on_error: bool = True) -> bool:
        """Execute through call_async() on a private event loop and wait.

        Must not be called from a coroutine; use invoke_async() there.

        Args:
            raise_on_error: Raise the call's error. When False the error is
                discarded and False is returned instead.

        Returns:
            True on success, False on a discarded error.

        Raises:
            RuntimeError: Called while an event loop is running in this thread.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            raise RuntimeError("run() cannot be used inside a running event loop; use invoke_async()")

        error = asyncio.run(self._run_until_complete())
        if error is None:
            return True
        if raise_on_error:
            raise error
        logger.debug("Discarding error from run(): %s", error)
        return False

    async def _run_until_complete(self) -> CallError | None:
        done: asyncio.Future[CallError | None] = asyncio.get_running_loop().create_future()

        def _on_complete(call: RestProxyCall, error: CallError | None, observer: Any, future: Any) -> None:
            future.set_result(error)

        self.call_async(_on_complete, user_data=done)
        return await done

    def invoke(
        self,
        observer: Any = None,
        callback: InvokeCallback | None = None,
        user_data: Any = None,
    ) -> InvokeResult:
        """Dispatch on the running event loop, returning an awaitable result.

        ``callback(call, result, user_data)``, if given, runs on completion.
        invoke_finish() must be called exactly once with the returned result;
        until then the call stays busy.

        Raises:
            CallInProgressError: Another execution is outstanding.
            UnboundURLError: The proxy URL requires binding.
            TypeError: The observer cannot be weakly referenced.
            RuntimeError: No event loop is running.
        """
        request = self._start_execution()
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        result = InvokeResult(self, future, callback, user_data)
        closure = _AsyncClosure(call=self, user_data=user_data, result=result)
        self._dispatch(request, closure, observer, self._on_invoke_completed)
        return result

    def invoke_finish(self, result: InvokeResult) -> None:
        """Collect the outcome of invoke() and make the call reusable.

        Raises:
            InvocationStateError: The result is incomplete, already finished,
                or belongs to another call.
            CallError: The request failed or returned a non-2xx status.
        """
        if result.call is not self:
            raise InvocationStateError("Result belongs to a different call")
        if result.finished:
            raise InvocationStateError("invoke_finish() already called for this result")
        if not result.done():
            raise InvocationStateError("Invocation has not completed")

        error = self._finish_invocation(result)
        if error is not None:
            raise error

    async def invoke_async(self, observer: Any = None) -> None:
        """invoke(), wait, then invoke_finish().

        If the awaiting task is cancelled, the call is cancelled too and its
        outcome is collected in the background.
        """
        result = self.invoke(observer)
        try:
            await result
        except asyncio.CancelledError:
            self.cancel()
            result.add_done_callback(self._finish_invocation)
            raise
        self.invoke_finish(result)

    def cancel(self) -> bool:
        """Request abort of the outstanding asynchronous execution.

        The completion path still runs, with a CallCancelledError. Without
        an outstanding execution this does nothing. Always returns True.
        """
        closure = self._closure
        if closure is not None:
            self._cancel_closure(closure)
        return True

    # =========================================================================
    # Completion path
    # =========================================================================

    def _start_execution(self) -> httpx.Request:
        if self._state is not CallState.IDLE:
            logger.warning("Call already in progress: %r", self)
            raise CallInProgressError("Call already in progress")
        self._reset_response()
        return build_request(self)

    def _dispatch(
        self,
        request: httpx.Request,
        closure: _AsyncClosure,
        observer: Any,
        on_complete: Callable[[RawResponse, _AsyncClosure], None],
    ) -> None:
        if observer is not None:
            closure.watch = ObserverWatch(observer, lambda: self._cancel_closure(closure))

        self._state = CallState.IN_FLIGHT
        self._closure = closure
        try:
            closure.invocation = self.proxy.executor.submit(request, on_complete, closure)
        except BaseException:
            self._release(closure)
            raise

    def _cancel_closure(self, closure: _AsyncClosure) -> None:
        # The closure check keeps a stale watch from cancelling a later execution
        if self._closure is closure and closure.invocation is not None:
            logger.debug("Cancelling %r", self)
            self.proxy.executor.cancel(closure.invocation)

    def _release(self, closure: _AsyncClosure) -> None:
        if closure.watch is not None:
            closure.watch.release()
        if self._closure is closure:
            self._closure = None
        self._state = CallState.IDLE

    def _on_call_completed(self, raw: RawResponse, closure: _AsyncClosure) -> None:
        error = self._finish_call(raw)
        observer = closure.watch.observer if closure.watch is not None else None
        self._release(closure)
        if closure.callback is not None:
            closure.callback(self, error, observer, closure.user_data)

    def _on_invoke_completed(self, raw: RawResponse, closure: _AsyncClosure) -> None:
        error = self._finish_call(raw)
        self._state = CallState.COMPLETED
        if closure.result is not None:
            closure.result._complete(error)

    def _finish_invocation(self, result: InvokeResult) -> CallError | None:
        result._finished = True
        closure = self._closure
        if closure is not None and closure.result is result:
            self._release(closure)
        return result._error

    def _reset_response(self) -> None:
        self._response_headers.clear()
        self._payload = None
        self._payload_length = 0
        self._status_code = 0
        self._status_message = None

    def _finish_call(self, raw: RawResponse) -> CallError | None:
        """Record the response and map it to an error (None on success)."""
        self._response_headers.clear()
        self._response_headers.update(raw.headers)
        if raw.is_transport_failure:
            self._payload = None
            self._payload_length = 0
        else:
            self._payload = raw.content
            self._payload_length = len(raw.content)
        self._status_code = raw.status_code
        self._status_message = raw.reason_phrase

        error = error_for_response(raw)
        logger.debug("Completed %r: %s %s", self, raw.status_code, raw.reason_phrase)
        return error
