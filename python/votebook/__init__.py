"""
Votebook - a realtime voting widget with an attached guestbook.

This package provides the reactive primitives the widget is built on,
plus the store gateway, controllers and server in its submodules.

Example usage:

    from votebook import signal, memo, effect

    # Create reactive state
    yes = signal(0)
    no = signal(0)

    # Create derived values
    @memo
    def total():
        return yes.value + no.value

    # Create side effects
    @effect
    def log_changes():
        print(f"Total votes: {total()}")

    # Update state (triggers effects)
    yes.value = 5
"""

from typing import Callable, TypeVar, Generic, Optional, Set, Any
import itertools
import threading

__version__ = "0.1.0"
__all__ = ["signal", "Signal", "memo", "Memo", "effect", "Effect"]


# Thread-local storage for tracking the current reactive context.
# This enables automatic dependency tracking.
_context = threading.local()

_signal_ids = itertools.count(1)


def _get_current_context() -> Optional["_ReactiveContext"]:
    """Get the currently active reactive context, if any."""
    stack = getattr(_context, "stack", None)
    if stack:
        return stack[-1]
    return None


def _push_context(ctx: "_ReactiveContext") -> None:
    """Push a reactive context onto the stack."""
    if not hasattr(_context, "stack"):
        _context.stack = []
    _context.stack.append(ctx)


def _pop_context() -> None:
    """Pop the current reactive context from the stack."""
    if hasattr(_context, "stack") and _context.stack:
        _context.stack.pop()


def _schedule(effect: "Effect") -> None:
    """Queue an effect to run once propagation has finished."""
    if not hasattr(_context, "pending"):
        _context.pending = []
    if effect not in _context.pending:
        _context.pending.append(effect)


def _flush() -> None:
    """
    Run queued effects.

    Every memo downstream of a change is already dirty by the time the
    first effect runs, so effects never read a stale memo. Signals set from
    inside an effect queue more effects onto the same flush.
    """
    if getattr(_context, "flushing", False):
        return
    if not hasattr(_context, "pending"):
        _context.pending = []
    pending = _context.pending
    _context.flushing = True
    try:
        while pending:
            pending.pop(0)._run()
    finally:
        pending.clear()
        _context.flushing = False


class _ReactiveContext:
    """
    A context that tracks dependencies during reactive computation.

    This is an internal class that manages dependency tracking when
    memos and effects read signals (or other memos).
    """

    def __init__(self) -> None:
        self.dependencies: Set[Any] = set()

    def track(self, source: Any) -> None:
        """Record that we depend on this source."""
        self.dependencies.add(source)

    def __enter__(self) -> "_ReactiveContext":
        _push_context(self)
        return self

    def __exit__(self, *args: Any) -> None:
        _pop_context()


class Signal:
    """
    A reactive signal holding a mutable value.

    Signals are the fundamental reactive primitive. When a signal's value
    is read within a reactive context (such as a memo or effect), the
    signal automatically registers that context as a dependent. When the
    signal's value changes, all dependents are notified.

    Attributes:
        value: The current value of the signal. Getting this value within
            a reactive context establishes a dependency. Setting this value
            notifies all dependents.

    Example:
        >>> tally = signal({"yes": 0, "no": 0})
        >>> tally.value["yes"]
        0
    """

    def __init__(self, initial_value: object) -> None:
        """
        Create a new signal with the given initial value.

        Args:
            initial_value: The initial value for the signal.
        """
        self._value = initial_value
        self._id = next(_signal_ids)
        self._dependents: Set[Any] = set()

    @property
    def value(self) -> Any:
        """Get the current value of the signal."""
        # Track this signal as a dependency if we're in a reactive context
        ctx = _get_current_context()
        if ctx is not None:
            ctx.track(self)
        return self._value

    @value.setter
    def value(self, new_value: object) -> None:
        """Set a new value, notifying all dependents."""
        self._value = new_value
        self._notify()

    def peek(self) -> Any:
        """Read the value without registering a dependency."""
        return self._value

    def _subscribe(self, dependent: Any) -> None:
        """Add a dependent to be notified on changes."""
        self._dependents.add(dependent)

    def _unsubscribe(self, dependent: Any) -> None:
        """Remove a dependent."""
        self._dependents.discard(dependent)

    def _notify(self) -> None:
        """Mark all dependents stale, then run the effects among them."""
        for dep in list(self._dependents):
            dep._on_dependency_changed()
        _flush()

    @property
    def id(self) -> int:
        """Get the unique identifier for this signal."""
        return self._id

    def __repr__(self) -> str:
        return f"Signal(value={self._value!r})"


T = TypeVar("T")


class Memo(Generic[T]):
    """
    A cached derived value that recomputes only when dependencies change.

    Memos are lazy: they only compute their value when accessed. Once
    computed, the value is cached until one of its dependencies changes.
    A memo read inside an effect (or another memo) becomes a dependency
    of that reader, so invalidation flows through.

    Example:
        >>> yes = signal(1)
        >>> no = signal(2)
        >>> @memo
        ... def total():
        ...     return yes.value + no.value
        >>> total()
        3
        >>> no.value = 5
        >>> total()
        6
    """

    def __init__(self, fn: Callable[[], T]) -> None:
        """
        Create a new memo with the given computation function.

        Args:
            fn: A function that computes the memo's value.
        """
        self._fn = fn
        self._value: Optional[T] = None
        self._dirty = True
        self._dependencies: Set[Any] = set()
        self._dependents: Set[Any] = set()

    def __call__(self) -> T:
        """Get the memo's value, recomputing if necessary."""
        ctx = _get_current_context()
        if ctx is not None:
            ctx.track(self)
        if self._dirty:
            self._recompute()
        return self._value  # type: ignore

    def _recompute(self) -> None:
        """Recompute the memo's value and update dependencies."""
        # Clear old subscriptions
        for source in self._dependencies:
            source._unsubscribe(self)

        # Run computation within a tracking context
        with _ReactiveContext() as ctx:
            self._value = self._fn()

        # Subscribe to new dependencies
        self._dependencies = ctx.dependencies
        for source in self._dependencies:
            source._subscribe(self)

        self._dirty = False

    def _subscribe(self, dependent: Any) -> None:
        self._dependents.add(dependent)

    def _unsubscribe(self, dependent: Any) -> None:
        self._dependents.discard(dependent)

    def _on_dependency_changed(self) -> None:
        """Called when one of our dependencies changes."""
        self._dirty = True
        for dep in list(self._dependents):
            dep._on_dependency_changed()

    def __repr__(self) -> str:
        state = "dirty" if self._dirty else "clean"
        return f"Memo({self._fn.__name__}, {state})"


class Effect:
    """
    A side-effecting computation that runs when dependencies change.

    Effects are eager: they run immediately when created and again
    whenever any of their dependencies change.

    Example:
        >>> tally = signal(0)
        >>> @effect
        ... def log_tally():
        ...     print(f"Tally is: {tally.value}")
        Tally is: 0
        >>> tally.value = 5
        Tally is: 5
    """

    def __init__(self, fn: Callable[[], None]) -> None:
        """
        Create a new effect with the given function.

        The function runs immediately to establish dependencies.

        Args:
            fn: A function to run as a side effect.
        """
        self._fn = fn
        self._dependencies: Set[Any] = set()
        self._disposed = False

        # Run immediately to establish dependencies
        self._run()

    def _run(self) -> None:
        """Run the effect and update dependencies."""
        if self._disposed:
            return

        # Clear old subscriptions
        for source in self._dependencies:
            source._unsubscribe(self)

        # Run within a tracking context
        with _ReactiveContext() as ctx:
            self._fn()

        # Subscribe to new dependencies
        self._dependencies = ctx.dependencies
        for source in self._dependencies:
            source._subscribe(self)

    def _on_dependency_changed(self) -> None:
        """Called when one of our dependencies changes."""
        if not self._disposed:
            _schedule(self)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Stop the effect from running."""
        self._disposed = True
        for source in self._dependencies:
            source._unsubscribe(self)
        self._dependencies.clear()

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Effect({self._fn.__name__}, {state})"


def signal(initial_value: object) -> Signal:
    """
    Create a new reactive signal with the given initial value.

    Args:
        initial_value: The initial value for the signal.

    Returns:
        A new Signal instance.
    """
    return Signal(initial_value)


def memo(fn: Callable[[], T]) -> Memo[T]:
    """
    Create a memoized computed value.

    The decorated function is called lazily and its result is cached.
    When any signals accessed during computation change, the cached
    value is invalidated and will be recomputed on next access.

    Args:
        fn: A function that computes the derived value.

    Returns:
        A Memo instance that can be called to get the value.
    """
    return Memo(fn)


def effect(fn: Callable[[], None]) -> Effect:
    """
    Create a reactive side effect.

    The decorated function runs immediately and again whenever any
    signals it accesses change.

    Args:
        fn: A function to run as a side effect.

    Returns:
        An Effect instance that can be used to dispose the effect.
    """
    return Effect(fn)
