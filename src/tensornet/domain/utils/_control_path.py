"""
State-based method dispatch (a.k.a. "control-path" templating) via decorators.

This module provides a small mechanism for routing a single method call to one
of several registered implementations based on a runtime attribute of the
receiving object.

Core idea
---------
- You define a *base* method on a class (its signature becomes the canonical one).
- You then register multiple "control paths" for that method, each keyed by:
    (ClassName, MethodName, StateVal)
- At runtime, the installed wrapper reads ``getattr(self, state_attr)`` and
  dispatches to the implementation registered for that value.

Two dispatchers are built from this module:

- buffers dispatch kernels on ``device_type`` (host vs. accelerator), and
- layers dispatch ``forward``/``backward``/shape inference on ``kind``
  (one implementation per operator tag).

Important notes
---------------
- The first decorated control path replaces the method on the class with a
  dispatch wrapper. The wrapper keeps the base method's name and docstring.
- Registered implementations are stored in a closure-local mapping owned by
  `create_path_builder()`. Different builders do not share mappings.
- Sub-methods are called as ``sub_method(self, *args, **kwargs)``, i.e. they
  behave like ordinary instance methods.
"""

from typing import (
    Callable,
    Dict,
    Hashable,
    Optional,
    Type,
    Any,
)
from typing_extensions import ParamSpec, TypeVar
from collections import namedtuple
from functools import wraps

P = ParamSpec("P")
R = TypeVar("R")

MethodKey = namedtuple(
    "MethodKey",
    [
        "ClassName",
        "MethodName",
        "StateVal",
    ],
)
"""Tuple-like key used to uniquely identify a control path."""

TrapFactory = Callable[[Callable[..., Any], Any], BaseException]


def create_path_builder(state_attr: str) -> Callable[
    [Type, Callable[P, R], Hashable, Optional[TrapFactory]],
    Callable[[Callable[P, R]], Callable[P, R]],
]:
    """
    Create and return a "path builder" used to register control paths.

    Parameters
    ----------
    state_attr : str
        Name of the attribute read on ``self`` at call time to select the
        implementation.

    Returns
    -------
    Callable
        A function with signature:

            (cls, method, state, trap_exception=None) -> decorator

        where ``decorator(sub_method)`` registers ``sub_method`` for that
        control path and installs the dispatch wrapper on ``cls``.

    Examples
    --------
    ::

        manager = create_path_builder("kind")

        class Node:
            kind = "a"
            def run(self, x: int) -> int: ...

        @manager(Node, Node.run, "a")
        def run_a(self, x: int) -> int:
            return x + 1
    """

    methods_map: Dict[MethodKey, Callable] = {}
    """Mapping from (class, method, state) keys to registered implementations."""

    def templator(
        cls: Type,
        method: Callable[P, R],
        state: Hashable,
        trap_exception: Optional[TrapFactory] = None,
    ) -> Callable[[Callable[P, R]], Callable[P, R]]:
        """
        Build a decorator that registers a control path implementation.

        Parameters
        ----------
        cls : Type
            The class whose method should be wrapped for state-based dispatch.
        method : Callable[P, R]
            The base method being templated.
        state : Hashable
            The state value that selects the decorated implementation.
        trap_exception : Optional[TrapFactory]
            Factory invoked as ``trap_exception(method, current_state)`` when
            no implementation matches; the returned exception is raised.
            When omitted, `NotImplementedError` is raised.

        Raises
        ------
        TypeError
            If `state` is not hashable.
        """
        try:
            hash(state)
        except TypeError:
            raise TypeError(f"The argument for 'state' must be hashable. Got {state!r}")

        smk = MethodKey(cls.__name__, method.__name__, state)

        def decorator(sub_method: Callable[P, R]) -> Callable[P, R]:
            methods_map[smk] = sub_method

            @wraps(method)
            def wrapper(self: Any, *args: P.args, **kwargs: P.kwargs) -> Any:
                if not hasattr(self, state_attr):
                    raise NotImplementedError(
                        "{} is missing attribute {!r}".format(type(self), state_attr)
                    )
                current = getattr(self, state_attr)
                sm = methods_map.get(MethodKey(cls.__name__, method.__name__, current))
                if sm is not None:
                    return sm(self, *args, **kwargs)
                if trap_exception is None:
                    raise NotImplementedError(
                        "Missing control path (state={!r}) for {}".format(
                            current, method.__name__
                        )
                    )
                raise trap_exception(method, current)

            setattr(cls, method.__name__, wrapper)
            return sub_method

        return decorator

    return templator
