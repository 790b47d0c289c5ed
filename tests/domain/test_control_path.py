import unittest

from tensornet.domain.utils import create_path_builder


class _Boom(Exception):
    pass


class TestCreatePathBuilder(unittest.TestCase):
    def setUp(self) -> None:
        # Fresh builder per test to avoid map-sharing across tests.
        self.decorator = create_path_builder("kind")

    def test_state_must_be_hashable(self) -> None:
        class C:
            kind = "A"

            def foo(self, x: int) -> int:
                return x

        with self.assertRaises(TypeError) as ctx:
            self.decorator(C, C.foo, ["not-hashable"])(lambda self, x: x)

        self.assertIn("must be hashable", str(ctx.exception))

    def test_dispatch_selects_registered_control_path(self) -> None:
        class C:
            def __init__(self, kind):
                self.kind = kind

            def foo(self, x: int) -> int:
                return -999

        @self.decorator(C, C.foo, "A")
        def foo_A(self, x: int) -> int:
            return x + 10

        @self.decorator(C, C.foo, "B")
        def foo_B(self, x: int) -> int:
            return x + 20

        self.assertEqual(C("A").foo(1), 11)
        self.assertEqual(C("B").foo(1), 21)

    def test_sub_method_receives_self(self) -> None:
        class C:
            kind = "A"
            offset = 5

            def foo(self, x: int) -> int:
                return -999

        @self.decorator(C, C.foo, "A")
        def foo_A(self, x: int) -> int:
            return x + self.offset

        self.assertEqual(C().foo(1), 6)

    def test_dispatch_follows_attribute_changes(self) -> None:
        class C:
            kind = "A"

            def foo(self) -> str:
                return "base"

        self.decorator(C, C.foo, "A")(lambda self: "a")
        self.decorator(C, C.foo, "B")(lambda self: "b")

        c = C()
        self.assertEqual(c.foo(), "a")
        c.kind = "B"
        self.assertEqual(c.foo(), "b")

    def test_missing_state_attribute_raises_not_implemented(self) -> None:
        class C:
            def foo(self, x: int) -> int:
                return x

        self.decorator(C, C.foo, "A")(lambda self, x: x + 1)

        with self.assertRaises(NotImplementedError) as ctx:
            C().foo(1)
        self.assertIn("kind", str(ctx.exception))

    def test_missing_control_path_raises_not_implemented(self) -> None:
        class C:
            kind = "Z"

            def foo(self) -> int:
                return 0

        self.decorator(C, C.foo, "A")(lambda self: 1)

        with self.assertRaises(NotImplementedError):
            C().foo()

    def test_trap_exception_factory_is_raised(self) -> None:
        class C:
            kind = "Z"

            def foo(self) -> int:
                return 0

        seen = []

        def trap(method, state):
            seen.append((method.__name__, state))
            return _Boom(state)

        self.decorator(C, C.foo, "A", trap)(lambda self: 1)

        with self.assertRaises(_Boom):
            C().foo()
        self.assertEqual(seen, [("foo", "Z")])

    def test_wrapper_keeps_base_method_metadata(self) -> None:
        class C:
            kind = "A"

            def foo(self) -> int:
                """Base docstring."""
                return 0

        self.decorator(C, C.foo, "A")(lambda self: 1)

        self.assertEqual(C.foo.__name__, "foo")
        self.assertEqual(C.foo.__doc__, "Base docstring.")

    def test_builders_do_not_share_registrations(self) -> None:
        class C:
            kind = "A"

            def foo(self) -> int:
                return 0

        other = create_path_builder("kind")
        self.decorator(C, C.foo, "A")(lambda self: 1)
        # a second builder replaces the wrapper with one backed by its own map
        other(C, C.foo, "B")(lambda self: 2)

        with self.assertRaises(NotImplementedError):
            C().foo()


if __name__ == "__main__":
    unittest.main()
