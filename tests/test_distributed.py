import math

import numpy as np
import pytest

from distributed import LOCAL, REMOTE, DistributedEngine, Slot, slot_seeds
from engine import ConcurrentEngine, SequentialEngine
from kernel import multiply_sequential
from protocol import SlotExecutionError


class TestPlan:

    def test_remote_only(self):
        engine = DistributedEngine(["a", "b", "c"], 2)
        assert engine.slot_count() == 3
        assert engine.plan(3) == [Slot(REMOTE, "a"), Slot(REMOTE, "b"), Slot(REMOTE, "c")]
        engine.shutdown()

    def test_master_local_slot_is_last(self):
        engine = DistributedEngine(["a", "b"], 2, master_threads=3)
        assert engine.slot_count() == 3
        assert engine.plan(3) == [Slot(REMOTE, "a"), Slot(REMOTE, "b"), Slot(LOCAL, 3)]
        engine.shutdown()

    def test_clamped_plan_keeps_master_slot(self):
        engine = DistributedEngine(["a", "b", "c"], 2, master_threads=1)
        assert engine.plan(2) == [Slot(REMOTE, "a"), Slot(LOCAL, 1)]
        assert engine.plan(0) == []
        engine.shutdown()

    def test_slot_seeds(self):
        assert slot_seeds(3) == [None, None, None]
        assert slot_seeds(3, 5) == slot_seeds(3, 5)
        assert len(set(slot_seeds(4, 5))) == 4


class TestMultiply:

    def test_small_example(self, workers):
        with DistributedEngine(workers[:2], 2) as engine:
            c = engine.multiply([[1, 2], [3, 4]], [[5, 7], [6, 8]])
        assert c.tolist() == [[17, 23], [39, 53]]

    @pytest.mark.parametrize("master_threads", [0, 2])
    @pytest.mark.parametrize("shape", [((11, 5), (4, 5)), ((3, 5), (10, 5)), ((1, 4), (1, 4))])
    def test_bit_identical_to_sequential(self, workers, master_threads, shape):
        rng = np.random.default_rng(master_threads)
        a, b_t = rng.standard_normal(shape[0]), rng.standard_normal(shape[1])
        with DistributedEngine(workers, 2, master_threads) as engine:
            c = engine.multiply(a, b_t, b_is_transposed=True)
        assert c.shape == (shape[0][0], shape[1][0])
        assert np.array_equal(c, multiply_sequential(a, b_t))

    def test_substitutable_with_local_engines(self, workers):
        rng = np.random.default_rng(12)
        a, b = rng.random((7, 6)), rng.random((6, 5))
        with DistributedEngine(workers, 3, 1) as dist, ConcurrentEngine(3) as local:
            results = [e.multiply(a, b) for e in (SequentialEngine(), local, dist)]
        assert all(np.array_equal(results[0], r) for r in results[1:])

    def test_same_server_twice(self, worker):
        rng = np.random.default_rng(4)
        a, b_t = rng.random((6, 3)), rng.random((2, 3))
        with DistributedEngine([worker, worker], 2) as engine:
            assert np.array_equal(engine.multiply(a, b_t, True), multiply_sequential(a, b_t))


class TestPi:

    def test_accuracy(self, workers):
        with DistributedEngine(workers, 2) as engine:
            assert abs(engine.pi(300_000) - math.pi) < 0.02

    def test_with_master_slot_and_tiny_n(self, workers):
        with DistributedEngine(workers, 4, master_threads=2) as engine:
            value = engine.pi(1)
        assert math.isfinite(value)
        assert 0.0 < value < 4.0


class TestFailures:

    def test_no_servers_fails_instead_of_returning_garbage(self):
        with DistributedEngine([], 2) as engine:
            with pytest.raises(ValueError):
                engine.multiply(np.ones((3, 2)), np.ones((2, 3)))
            with pytest.raises(ValueError):
                engine.pi(100)

    def test_master_slot_alone_still_works(self):
        with DistributedEngine([], 2, master_threads=2) as engine:
            c = engine.multiply(np.ones((3, 2)), np.ones((2, 3)))
        assert c.tolist() == [[2.0, 2.0, 2.0]] * 3

    def test_unreachable_server_aborts_job(self, worker):
        with DistributedEngine([worker, "127.0.0.1:1"], 2) as engine:
            with pytest.raises(SlotExecutionError) as info:
                engine.multiply(np.ones((4, 2)), np.ones((2, 2)), True)
        assert info.value.slot == 1
        assert info.value.kind == "transport"

    def test_missing_service_aborts_job(self, empty_registry_server):
        with DistributedEngine([empty_registry_server], 2) as engine:
            with pytest.raises(SlotExecutionError) as info:
                engine.pi(100)
        assert info.value.kind == "not_bound"

    def test_remote_failure_aborts_job(self, worker):
        with DistributedEngine([worker], 2) as engine:
            with pytest.raises(SlotExecutionError) as info:
                engine.multiply(np.ones((3, 3)), np.ones((2, 2)), True)
        assert info.value.kind == "remote"
