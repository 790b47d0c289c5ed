import threading
import unittest
from unittest import TestCase

import numpy as np

from tensornet.domain import (
    AllocationError,
    DeviceMismatchError,
    DeviceNotSupportedError,
    ShapeMismatchError,
)
from tensornet.domain.device import Device
from tensornet.infrastructure.buffer import Buffer, cuda_device_count, is_available


class TestBufferConstruction(TestCase):
    def test_zero_initialized_float32(self):
        b = Buffer((2, 3))
        self.assertEqual(b.shape, (2, 3))
        self.assertEqual(b.size, 6)
        self.assertEqual(b.ndim, 2)
        self.assertEqual(b.dtype, np.float32)
        self.assertEqual(b.device, Device("cpu"))
        np.testing.assert_array_equal(b.to_numpy(), np.zeros((2, 3), np.float32))

    def test_stride_is_row_major_in_elements(self):
        self.assertEqual(Buffer((4, 2, 3)).stride, (6, 3, 1))
        self.assertEqual(Buffer(5).stride, (1,))

    def test_invalid_shapes_raise_allocation_error(self):
        for shape in ((), (0,), (3, 0), (-1, 2)):
            with self.subTest(shape=shape):
                with self.assertRaises(AllocationError):
                    Buffer(shape)

    def test_unavailable_devices_raise_allocation_error(self):
        with self.assertRaises(AllocationError):
            Buffer((2,), device="fpga:0")
        with self.assertRaises(AllocationError):
            Buffer((2,), device=f"cuda:{cuda_device_count() + 3}")

    def test_availability_probe(self):
        self.assertTrue(is_available(Device("cpu:3")))
        self.assertFalse(is_available(Device("fpga:0")))

    def test_factories(self):
        np.testing.assert_array_equal(Buffer.ones((2,)).to_numpy(), [1, 1])
        np.testing.assert_array_equal(Buffer.full((2, 2), 3.5).to_numpy(), np.full((2, 2), 3.5))
        np.testing.assert_array_equal(Buffer.arange(4).to_numpy(), [0, 1, 2, 3])
        np.testing.assert_array_equal(Buffer.arange(1, 7, 2).to_numpy(), [1, 3, 5])
        like = Buffer.full_like(Buffer((3,), device="cpu:1"), 2.0)
        self.assertEqual(like.device, Device("cpu:1"))
        np.testing.assert_array_equal(like.to_numpy(), [2, 2, 2])
        self.assertEqual(Buffer.empty((4, 1)).shape, (4, 1))

    def test_from_numpy_copies_and_defaults_to_float32(self):
        src = np.arange(6, dtype=np.float64).reshape(2, 3)
        b = Buffer.from_numpy(src)
        src[0, 0] = 100.0
        self.assertEqual(b.dtype, np.float32)
        self.assertEqual(b[0], 0.0)

    def test_scalar_literal_becomes_single_element(self):
        b = Buffer.from_numpy(7.0)
        self.assertEqual(b.shape, (1,))
        self.assertEqual(b.item(), 7.0)

    def test_nbytes_and_data_ptr(self):
        b = Buffer((3, 4))
        self.assertEqual(b.nbytes, 48)
        self.assertIsInstance(b.data_ptr(), int)


class TestBufferStructure(TestCase):
    def test_view_aliases_and_is_read_only(self):
        b = Buffer.arange(6)
        v = b.view((2, 3))
        self.assertTrue(v.is_view)
        self.assertEqual(v.shape, (2, 3))
        b.fill_(1.0)
        np.testing.assert_array_equal(v.to_numpy(), np.ones((2, 3)))
        with self.assertRaises(ValueError):
            v.fill_(2.0)
        with self.assertRaises(ValueError):
            v.inc_(Buffer.ones((2, 3)))

    def test_view_with_wrong_size_raises(self):
        with self.assertRaises(ShapeMismatchError):
            Buffer((6,)).view((4, 2))

    def test_view_goes_stale_after_reshape(self):
        b = Buffer.arange(6)
        v = b.view((3, 2))
        self.assertTrue(v.is_current_view_of(b))
        b.reshape_((2, 3))
        self.assertFalse(v.is_current_view_of(b))
        with self.assertRaises(ValueError):
            v.to_numpy()

    def test_reshape_bumps_version(self):
        b = Buffer((2, 3))
        before = b.version
        b.reshape_((3, 2))
        self.assertEqual(b.shape, (3, 2))
        self.assertGreater(b.version, before)
        with self.assertRaises(ShapeMismatchError):
            b.reshape_((4, 2))

    def test_resize_reallocates_zeroed(self):
        b = Buffer.ones((2, 2))
        b.resize_((3, 2))
        self.assertEqual(b.shape, (3, 2))
        np.testing.assert_array_equal(b.to_numpy(), np.zeros((3, 2)))

    def test_resize_to_same_shape_keeps_contents(self):
        b = Buffer.ones((2, 2))
        version = b.version
        b.resize_((2, 2))
        self.assertEqual(b.version, version)
        np.testing.assert_array_equal(b.to_numpy(), np.ones((2, 2)))

    def test_move_between_host_lanes(self):
        b = Buffer.arange(3)
        same = b.to("cpu:1")
        self.assertIs(same, b)
        self.assertEqual(b.device, Device("cpu:1"))
        np.testing.assert_array_equal(b.to_numpy(), [0, 1, 2])

    def test_views_cannot_move(self):
        with self.assertRaises(ValueError):
            Buffer((2,)).view((2,)).to("cpu:1")

    def test_clone_is_independent(self):
        b = Buffer.arange(3)
        c = b.clone("cpu:2")
        b.fill_(9.0)
        self.assertEqual(c.device, Device("cpu:2"))
        np.testing.assert_array_equal(c.to_numpy(), [0, 1, 2])

    def test_views_share_the_owner_lock(self):
        b = Buffer((4,))
        self.assertIsInstance(b.lock, type(threading.Lock()))
        self.assertIs(b.view((2, 2)).lock, b.lock)
        self.assertIsNot(Buffer((4,)).lock, b.lock)


class TestBufferAccess(TestCase):
    def test_item_and_getitem_use_linear_index(self):
        b = Buffer.from_numpy(np.array([[1, 2], [3, 4]]))
        self.assertEqual(b.item(3), 4.0)
        self.assertEqual(b[2], 3.0)
        with self.assertRaises(TypeError):
            b[0, 1]

    @unittest.skipUnless(cuda_device_count() > 0, "CUDA device not available")
    def test_item_on_accelerator_is_not_supported(self):
        with self.assertRaises(DeviceNotSupportedError):
            Buffer((2,), device="cuda:0").item(0)

    def test_copy_from_checks_shape(self):
        a = Buffer((2, 2))
        with self.assertRaises(ShapeMismatchError):
            a.copy_from(Buffer((4,)))
        with self.assertRaises(ShapeMismatchError):
            a.copy_from_numpy(np.zeros(3))

    def test_copy_from_across_host_lanes(self):
        src = Buffer.from_numpy([1.0, 2.0], device="cpu:1")
        dst = Buffer((2,), device="cpu:0")
        dst.copy_from(src)
        np.testing.assert_array_equal(dst.to_numpy(), [1, 2])
        self.assertEqual(dst.device, Device("cpu"))

    def test_to_numpy_returns_a_copy(self):
        b = Buffer((2,))
        a = b.to_numpy()
        a[0] = 5.0
        self.assertEqual(b[0], 0.0)


class TestBufferElementwise(TestCase):
    def setUp(self):
        self.a = Buffer.from_numpy([[1.0, 2.0], [3.0, 4.0]])
        self.b = Buffer.from_numpy([[0.5, -1.0], [2.0, 8.0]])

    def test_binary_ops(self):
        np.testing.assert_allclose(Buffer.add(self.a, self.b).to_numpy(), [[1.5, 1], [5, 12]])
        np.testing.assert_allclose(Buffer.sub(self.a, self.b).to_numpy(), [[0.5, 3], [1, -4]])
        np.testing.assert_allclose(Buffer.mul(self.a, self.b).to_numpy(), [[0.5, -2], [6, 32]])
        np.testing.assert_allclose(Buffer.div(self.a, self.b).to_numpy(), [[2, -2], [1.5, 0.5]])

    def test_binary_ops_check_operands(self):
        with self.assertRaises(ShapeMismatchError):
            Buffer.add(self.a, Buffer((4,)))
        with self.assertRaises(DeviceMismatchError):
            Buffer.add(self.a, Buffer((2, 2), device="cpu:1"))
        with self.assertRaises(ShapeMismatchError):
            Buffer.add(self.a, self.b, out=Buffer((3, 2)))

    def test_axpby_may_alias_output(self):
        Buffer.axpby(2.0, self.a, -1.0, self.b, out=self.a)
        np.testing.assert_allclose(self.a.to_numpy(), [[1.5, 5], [4, 0]])

    def test_in_place_updates(self):
        self.a.inc_(self.b).scale_(2.0).add_scalar_(1.0)
        np.testing.assert_allclose(self.a.to_numpy(), [[4, 3], [11, 25]])

    def test_clamp_in_place(self):
        self.b.clamp_(0.0, 2.0)
        np.testing.assert_array_equal(self.b.to_numpy(), [[0.5, 0.0], [2.0, 2.0]])
        with self.assertRaises(ValueError):
            self.b.clamp_(1.0, -1.0)
        with self.assertRaises(ValueError):
            self.a.view((4,)).clamp_(0.0, 1.0)

    def test_unary(self):
        x = Buffer.from_numpy([-2.0, 0.0, 3.0])
        np.testing.assert_allclose(x.apply_unary("relu").to_numpy(), [0, 0, 3])
        np.testing.assert_allclose(x.apply_unary("sign").to_numpy(), [-1, 0, 1])
        np.testing.assert_allclose(x.apply_unary("square").to_numpy(), [4, 0, 9])
        np.testing.assert_allclose(x.apply_unary("neg").to_numpy(), [2, 0, -3])
        np.testing.assert_allclose(
            x.apply_unary("exp").to_numpy(), np.exp([-2.0, 0.0, 3.0]), rtol=1e-6
        )
        x.apply_unary("abs", out=x)
        np.testing.assert_allclose(x.to_numpy(), [2, 0, 3])
        with self.assertRaises(ValueError):
            x.apply_unary("tanh")

    def test_sum2d_rowwise(self):
        bias = Buffer.from_numpy([10.0, 20.0])
        out = Buffer.sum2d_rowwise(self.a, bias)
        np.testing.assert_allclose(out.to_numpy(), [[11, 22], [13, 24]])
        with self.assertRaises(ShapeMismatchError):
            Buffer.sum2d_rowwise(self.a, Buffer((3,)))

    def test_matmul_variants(self):
        A = np.arange(6, dtype=np.float32).reshape(2, 3)
        B = np.arange(12, dtype=np.float32).reshape(3, 4)
        a, b = Buffer.from_numpy(A), Buffer.from_numpy(B)
        np.testing.assert_allclose(Buffer.matmul(a, b).to_numpy(), A @ B)

        bt = Buffer.from_numpy(B.T)
        np.testing.assert_allclose(Buffer.matmul(a, bt, trans_b=True).to_numpy(), A @ B)

        at = Buffer.from_numpy(A.T)
        out = Buffer.ones((2, 4))
        Buffer.matmul(at, b, out=out, trans_a=True, accumulate=True)
        np.testing.assert_allclose(out.to_numpy(), A @ B + 1)

    def test_matmul_errors(self):
        a = Buffer((2, 3))
        with self.assertRaises(ShapeMismatchError):
            Buffer.matmul(a, Buffer((2, 3)))
        with self.assertRaises(ValueError):
            Buffer.matmul(a, Buffer((3, 1)), accumulate=True)
        with self.assertRaises(DeviceMismatchError):
            Buffer.matmul(a, Buffer((3, 1), device="cpu:1"))


if __name__ == "__main__":
    unittest.main()
